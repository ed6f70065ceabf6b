"""Capability gate: is location access currently authorized?

The gate is a pure query.  Implementations must reflect the live state
of the host's permission system on every call and must not cache.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

_logger = logging.getLogger(__name__)

#: Default polling cadence for :func:`watch_access`.
DEFAULT_WATCH_INTERVAL: float = 0.5


@runtime_checkable
class CapabilityGate(Protocol):
    def has_access(self) -> bool:
        """True iff coarse or fine location access is granted."""
        ...


class Permissions(BaseModel):
    """Snapshot of the location authorizations held by the process."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fine: bool = False
    coarse: bool = False
    background: bool = False

    @property
    def location(self) -> bool:
        return self.fine or self.coarse


class PermissionGate:
    """In-memory gate driven by the host's permission flow.

    The host calls :meth:`grant` / :meth:`revoke` as the user changes
    authorizations; readers always see the latest value.
    """

    def __init__(self, permissions: Permissions | None = None) -> None:
        self._lock = threading.Lock()
        self._permissions = permissions or Permissions()

    @property
    def permissions(self) -> Permissions:
        with self._lock:
            return self._permissions

    def set(self, permissions: Permissions) -> None:
        with self._lock:
            previous = self._permissions
            self._permissions = permissions
        if previous != permissions:
            _logger.info(
                "Location permissions changed fine=%s coarse=%s background=%s",
                permissions.fine,
                permissions.coarse,
                permissions.background,
            )

    def grant(self, *, fine: bool = True, coarse: bool = True, background: bool = False) -> None:
        self.set(Permissions(fine=fine, coarse=coarse, background=background))

    def revoke(self) -> None:
        self.set(Permissions())

    def has_access(self) -> bool:
        return self.permissions.location

    def has_background_access(self) -> bool:
        return self.permissions.background


class CallableGate:
    """Gate backed by a live query function (e.g. an OS permission check)."""

    def __init__(self, query: Callable[[], bool]) -> None:
        self._query = query

    def has_access(self) -> bool:
        try:
            return bool(self._query())
        except Exception:
            _logger.warning("Permission query failed; treating access as denied", exc_info=True)
            return False


async def watch_access(
    gate: CapabilityGate,
    interval: float = DEFAULT_WATCH_INTERVAL,
) -> AsyncIterator[bool]:
    """Yield the gate's access flag on start and whenever it changes.

    Polls every *interval* seconds; the iterator runs until the consumer
    stops iterating or the surrounding task is cancelled.
    """
    if interval <= 0:
        raise ValueError("interval must be > 0")
    last: bool | None = None
    while True:
        current = gate.has_access()
        if current != last:
            last = current
            yield current
        await asyncio.sleep(interval)
