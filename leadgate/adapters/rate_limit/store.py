"""Storage backends for rate limiter state.

The limiter's arithmetic is identical whichever store is used; a store only
moves a plain dict in and out.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class AbstractStateStore(ABC):
    """Key-value persistence for limiter state."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the last saved state, or None when nothing was saved."""
        raise NotImplementedError

    @abstractmethod
    def save(self, data: dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryStateStore(AbstractStateStore):
    """Process-local store; state is lost on restart."""

    def __init__(self) -> None:
        self._data: dict[str, Any] | None = None
        self._lock = threading.Lock()

    def load(self) -> dict[str, Any] | None:
        with self._lock:
            return json.loads(json.dumps(self._data)) if self._data is not None else None

    def save(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._data = json.loads(json.dumps(data))


class JsonFileStateStore(AbstractStateStore):
    """JSON file store so call history survives restarts.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so readers never see a partial document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> dict[str, Any] | None:
        with self._lock:
            if not self.path.is_file():
                return None
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning(
                    "rate_limit.state_load_failed",
                    extra={"path": str(self.path), "error_msg": str(exc)},
                )
                return None
            if not isinstance(data, dict):
                logger.warning(
                    "rate_limit.state_load_failed",
                    extra={"path": str(self.path), "error_msg": "state is not an object"},
                )
                return None
            return data

    def save(self, data: dict[str, Any]) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
