from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypedDict


class LeadQuery(TypedDict, total=False):
	"""Logical request parameters handed to a transport."""

	start: datetime
	end: datetime
	page: int | None


@dataclass(frozen=True)
class TransportResponse:
	"""Raw upstream reply: HTTP status plus decoded JSON body."""

	status_code: int
	body: dict[str, Any] = field(default_factory=dict)


class TransportError(Exception):
	"""Network-level failure (timeout, connection reset, unreadable reply)."""


class AbstractTransport(ABC):
	"""Interface for clients that perform the actual upstream exchange."""

	@abstractmethod
	async def send(self, params: LeadQuery) -> TransportResponse:
		"""Send one lead-listing request.

		Args:
			params: Window bounds and optional page number.

		Returns:
			TransportResponse: Status and decoded body, whatever the status.

		Raises:
			TransportError: If no response could be obtained.
		"""
		...

	async def aclose(self) -> None:
		"""Release network resources (no-op by default)."""
