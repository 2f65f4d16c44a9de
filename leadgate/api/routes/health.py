from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness plus component health.

    Always answers 200 while the process is up; ``status`` turns
    ``degraded`` while the outbound limiter is blocked. Counts only, no
    cached values or credentials.
    """
    service = getattr(request.app.state, "access_service", None)
    if service is None:
        return {"status": "ok", "components": {}}

    health = service.health()
    status = "ok" if health["status"] == "healthy" else health["status"]
    return {"status": status, "components": health["components"]}
