"""Fix acquisition engine.

Returns the best available fix for an on-demand request: the provider's
cached reading when it is fresh enough, otherwise the first fix of a
short-lived live stream, bounded by a hard deadline.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from pylocus.exceptions import LocusError, PermissionDeniedError, ProviderUnavailableError
from pylocus.gate import CapabilityGate
from pylocus.models.fix import Fix
from pylocus.models.request import FixRequest
from pylocus.provider.base import PositionProvider, Subscription

_logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_THRESHOLD: float = 60.0
DEFAULT_TIMEOUT: float = 30.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FixAcquirer:
    """One-shot fix acquisition.

    Parameters
    ----------
    gate
        Capability gate consulted before and during the wait.
    provider
        Positioning backend.
    clock
        Wall clock used to age cached fixes.
    permission_poll_interval
        Seconds between capability checks while waiting for a live fix.
    request
        Stream profile for the live request; defaults to
        :meth:`FixRequest.one_shot`.
    """

    def __init__(
        self,
        gate: CapabilityGate,
        provider: PositionProvider,
        *,
        clock: Callable[[], datetime] = _utcnow,
        permission_poll_interval: float = 0.5,
        request: FixRequest | None = None,
    ) -> None:
        if permission_poll_interval <= 0:
            raise ValueError("permission_poll_interval must be > 0")
        self._gate = gate
        self._provider = provider
        self._clock = clock
        self._poll_interval = permission_poll_interval
        self._request = request or FixRequest.one_shot()

    async def acquire(
        self,
        freshness_threshold: float = DEFAULT_FRESHNESS_THRESHOLD,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Fix | None:
        """Return a fix no older than *freshness_threshold* seconds, or ``None``.

        *timeout* is a hard deadline in seconds measured from the call,
        covering both the cached lookup and the live wait.  ``None`` means
        no fix: access denied or revoked, provider unavailable, or the
        deadline passed.
        """
        if not self._gate.has_access():
            _logger.debug("Acquire skipped: location access not granted")
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0.0)

        cached = await self._cached_fix(deadline - loop.time())
        if cached is not None:
            age = cached.age(self._clock())
            if age < freshness_threshold:
                _logger.debug("Using cached fix id=%s age=%.1fs", cached.id, age)
                return cached
            _logger.debug("Cached fix too old (age=%.1fs threshold=%.1fs)", age, freshness_threshold)

        remaining = deadline - loop.time()
        if remaining <= 0:
            _logger.debug("Acquire deadline passed before live request")
            return None
        return await self._wait_for_live_fix(loop, deadline)

    async def _cached_fix(self, budget: float) -> Fix | None:
        if budget <= 0:
            return None
        try:
            return await asyncio.wait_for(self._provider.last_known_fix(), budget)
        except TimeoutError:
            _logger.debug("Last known fix lookup exceeded the acquire deadline")
            return None

    async def _wait_for_live_fix(self, loop: asyncio.AbstractEventLoop, deadline: float) -> Fix | None:
        future: asyncio.Future[Fix | None] = loop.create_future()
        loop_thread = threading.get_ident()

        def _resolve(value: Fix | None) -> None:
            if not future.done():
                future.set_result(value)

        def _resolve_threadsafe(value: Fix | None) -> None:
            if threading.get_ident() == loop_thread:
                _resolve(value)
            else:
                loop.call_soon_threadsafe(_resolve, value)

        def on_fix(fix: Fix) -> None:
            _resolve_threadsafe(fix)

        def on_error(error: LocusError) -> None:
            _logger.debug("Live fix stream ended early: %s", error)
            _resolve_threadsafe(None)

        try:
            subscription: Subscription = await asyncio.wait_for(
                self._provider.stream_fixes(self._request, on_fix, on_error),
                deadline - loop.time(),
            )
        except PermissionDeniedError:
            _logger.debug("Live fix request denied")
            return None
        except ProviderUnavailableError:
            _logger.warning("Live fix request failed: provider unavailable", exc_info=True)
            return None
        except TimeoutError:
            _logger.debug("Opening the live fix stream exceeded the acquire deadline")
            return None

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    _logger.debug("Live fix request timed out")
                    return None
                try:
                    return await asyncio.wait_for(asyncio.shield(future), min(remaining, self._poll_interval))
                except TimeoutError:
                    if not self._gate.has_access():
                        _logger.debug("Location access revoked while waiting for a fix")
                        return None
        finally:
            subscription.cancel()
