"""Application factory for the FastAPI app.

Builds the app (metadata, middleware, handlers, routers) and attaches one
``AccessService`` per app instance on ``app.state``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from leadgate.api.routes import admin_router, health_router, leads_router
from leadgate.core.config import settings
from leadgate.core.dependencies import build_access_service
from leadgate.core.exception_handlers import setup_exception_handlers
from leadgate.core.logging import configure_logging
from leadgate.core.middleware import request_id_middleware
from leadgate.core.openapi import TAGS_METADATA, apply_openapi_customizations
from leadgate.services.access_service import AccessService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    service: AccessService = app.state.access_service
    await service.transport.aclose()
    logger.info("app.shutdown", extra={"cache": service.get_cache_stats()})


def create_app(access_service: AccessService | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        access_service: Pre-built service (tests inject fakes here); built
            from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    configure_logging(settings.log)

    app = FastAPI(
        title="leadgate",
        description=(
            "Compliance-aware gateway to a rate-limited lead listing API. Validates "
            "requested date ranges, caches responses, enforces call cadence locally, "
            "and classifies upstream failures with bounded retries. Requires X-API-Key."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        openapi_tags=TAGS_METADATA,
        lifespan=_lifespan,
    )
    app.state.access_service = access_service or build_access_service(settings)

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(leads_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info("app.created", extra={"upstream": settings.upstream.base_url})
    return app
