from __future__ import annotations

from leadgate.api.routes.admin import router as admin_router
from leadgate.api.routes.health import router as health_router
from leadgate.api.routes.leads import router as leads_router

__all__ = ["admin_router", "health_router", "leads_router"]
