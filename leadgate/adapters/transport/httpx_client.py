"""HTTP transport for the lead listing endpoint."""

from typing import Any

import httpx

from leadgate.adapters.transport.base import (
    AbstractTransport,
    LeadQuery,
    TransportError,
    TransportResponse,
)
from leadgate.utils.date_format import format_for_upstream

USER_AGENT = "leadgate/0.1"


class HttpxLeadTransport(AbstractTransport):
    """Client for the upstream lead listing API.

    Uses an ``httpx.AsyncClient``; the CRM key travels as the
    ``glusr_crm_key`` query parameter and bounds are rendered in the
    upstream's IST timestamp dialect.
    """

    def __init__(
        self,
        base_url: str,
        crm_key: str,
        timeout_seconds: float = 30.0,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Lead listing endpoint URL.
            crm_key: CRM key issued by the upstream.
            timeout_seconds: Timeout for requests in seconds.
            client: Preconfigured client (mainly for tests).
        """
        if not crm_key:
            raise ValueError("crm_key is required")
        self.base_url = base_url
        self._crm_key = crm_key
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    def build_params(self, params: LeadQuery) -> dict[str, str]:
        query = {
            "glusr_crm_key": self._crm_key,
            "start_time": format_for_upstream(params["start"]),
            "end_time": format_for_upstream(params["end"]),
        }
        page = params.get("page")
        if page:
            query["page"] = str(page)
        return query

    async def send(self, params: LeadQuery) -> TransportResponse:
        """Perform the GET request and decode the body.

        Non-JSON bodies are wrapped as ``{"MESSAGE": <text>}`` so the
        classifier can still match on the upstream's wording.

        Raises:
            TransportError: On timeouts and connection-level failures.
        """
        try:
            response = await self.client.get(self.base_url, params=self.build_params(params))
        except httpx.TimeoutException as exc:
            raise TransportError(f"Upstream request timed out: {type(exc).__name__}") from exc
        except httpx.RequestError as exc:
            # The message may embed the URL (and with it the CRM key).
            raise TransportError(f"Upstream request failed: {type(exc).__name__}") from exc

        body: Any
        try:
            body = response.json()
        except ValueError:
            body = {"MESSAGE": response.text[:500]}
        if not isinstance(body, dict):
            body = {"RESPONSE": body}

        return TransportResponse(status_code=response.status_code, body=body)

    async def aclose(self) -> None:
        await self.client.aclose()
