"""Factory for creating transport instances from configuration."""

from leadgate.adapters.transport.base import AbstractTransport
from leadgate.adapters.transport.httpx_client import HttpxLeadTransport
from leadgate.core.config import UpstreamSettings, settings
from leadgate.core.errors import ValidationAppError


def create_transport(upstream: UpstreamSettings | None = None) -> AbstractTransport:
    """Instantiate the upstream transport.

    Reads configuration from leadgate.core.config.settings unless explicit
    upstream settings are given.

    Returns:
        AbstractTransport: Configured transport instance.

    Raises:
        ValidationAppError: If the CRM key is not configured.
    """
    cfg = upstream or settings.upstream

    if not cfg.crm_key:
        raise ValidationAppError(
            code="upstream_missing_crm_key",
            message="Lead upstream requires UPSTREAM_CRM_KEY environment variable",
        )

    return HttpxLeadTransport(
        base_url=cfg.base_url,
        crm_key=cfg.crm_key,
        timeout_seconds=cfg.timeout_seconds,
    )
