from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from leadgate.core.auth import verify_api_key
from leadgate.core.dependencies import get_access_service
from leadgate.schemas.leads import LeadsResponse
from leadgate.services.access_service import AccessResult, AccessService
from leadgate.services.compliance import DateRange
from leadgate.utils.date_format import coerce_bound

router = APIRouter(tags=["Leads"], dependencies=[Depends(verify_api_key)])

ServiceDep = Annotated[AccessService, Depends(get_access_service)]

_BOUND_HELP = (
    "Upstream dialect (DD-MM-YYYYHH:MM:SS or DD-MON-YYYY, IST) or ISO-8601 "
    "(no offset means UTC)."
)


def _to_response(result: AccessResult) -> LeadsResponse:
    result.raise_for_error()
    return LeadsResponse.from_body(
        result.data,
        from_cache=result.from_cache,
        attempts=result.attempts,
        warnings=list(result.compliance.warnings) if result.compliance else [],
    )


@router.get("/leads", response_model=LeadsResponse)
async def list_leads(
    service: ServiceDep,
    start_time: Annotated[str | None, Query(description=f"Start of the window. {_BOUND_HELP}")] = None,
    end_time: Annotated[str | None, Query(description=f"End of the window. {_BOUND_HELP}")] = None,
    page: Annotated[int | None, Query(ge=1, description="Upstream page number.")] = None,
) -> LeadsResponse:
    """Fetch leads for a window.

    Unparseable bounds are treated as missing, so the range is rejected with
    422 and every violation listed. Local rate-limit denials return 429 with
    ``Retry-After``; upstream failures return 502.
    """
    date_range = DateRange(start=coerce_bound(start_time), end=coerce_bound(end_time))
    result = await service.check_and_call(date_range, page=page)
    return _to_response(result)


@router.get("/leads/today", response_model=LeadsResponse)
async def leads_today(service: ServiceDep) -> LeadsResponse:
    return _to_response(await service.fetch_today())


@router.get("/leads/yesterday", response_model=LeadsResponse)
async def leads_yesterday(service: ServiceDep) -> LeadsResponse:
    return _to_response(await service.fetch_yesterday())


@router.get("/leads/recent", response_model=LeadsResponse)
async def leads_recent(
    service: ServiceDep,
    days: Annotated[int, Query(ge=1, description="Trailing days; clamped to the maximum span.")] = 1,
) -> LeadsResponse:
    return _to_response(await service.fetch_last_days(days))
