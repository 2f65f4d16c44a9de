"""Transport adapter layer - abstracts over the upstream HTTP exchange."""

from leadgate.adapters.transport.base import (
    AbstractTransport,
    LeadQuery,
    TransportError,
    TransportResponse,
)
from leadgate.adapters.transport.factory import create_transport
from leadgate.adapters.transport.httpx_client import HttpxLeadTransport

__all__ = [
    "AbstractTransport",
    "HttpxLeadTransport",
    "LeadQuery",
    "TransportError",
    "TransportResponse",
    "create_transport",
]
