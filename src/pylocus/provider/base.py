"""Position provider protocol and the cancellable subscription handle."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from pylocus.exceptions import LocusError
from pylocus.models.fix import Fix
from pylocus.models.request import FixRequest

_logger = logging.getLogger(__name__)

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[LocusError], None]


class Subscription:
    """Handle for one continuous fix stream.

    Providers create the handle, attach their teardown with
    :meth:`attach_teardown` once the stream is open, and feed it through
    :meth:`deliver` / :meth:`fail`.  Consumers only ever call
    :meth:`cancel`.

    The teardown runs exactly once no matter how many times, or from how
    many threads, the handle is cancelled or failed.  Nothing is delivered
    after the handle is closed.
    """

    def __init__(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
        *,
        min_interval_s: float = 0.0,
        label: str = "",
    ) -> None:
        self._on_fix = on_fix
        self._on_error = on_error
        self._min_interval_s = min_interval_s
        self.label = label
        self._lock = threading.Lock()
        self._closed = False
        self._teardown: Callable[[], None] | None = None
        self._last_delivery: float | None = None
        self.delivered = 0

    @property
    def cancelled(self) -> bool:
        return self._closed

    @property
    def active(self) -> bool:
        return not self._closed

    def attach_teardown(self, teardown: Callable[[], None]) -> None:
        """Register the provider-side cleanup.

        If the handle was already cancelled while the stream was being
        opened, the teardown runs immediately.
        """
        with self._lock:
            if not self._closed:
                self._teardown = teardown
                return
        self._run_teardown(teardown)

    def deliver(self, fix: Fix) -> bool:
        """Hand *fix* to the consumer; returns False when dropped."""
        with self._lock:
            if self._closed:
                return False
            now = time.monotonic()
            if (
                self._min_interval_s > 0
                and self._last_delivery is not None
                and now - self._last_delivery < self._min_interval_s
            ):
                return False
            self._last_delivery = now
            self.delivered += 1
        self._on_fix(fix)
        return True

    def fail(self, error: LocusError) -> None:
        """Close the stream because the provider lost it."""
        if not self._close():
            return
        _logger.debug("Subscription %s failed: %s", self.label or id(self), error)
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                _logger.debug("Subscription error callback failed", exc_info=True)

    def cancel(self) -> None:
        """Stop the stream.  Cancelling twice is a no-op."""
        if self._close():
            _logger.debug("Subscription %s cancelled", self.label or id(self))

    def _close(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            teardown = self._teardown
            self._teardown = None
        if teardown is not None:
            self._run_teardown(teardown)
        return True

    @staticmethod
    def _run_teardown(teardown: Callable[[], None]) -> None:
        try:
            teardown()
        except Exception:
            _logger.warning("Subscription teardown failed", exc_info=True)


@runtime_checkable
class PositionProvider(Protocol):
    """Opaque positioning backend.

    ``last_known_fix`` is best-effort and bounded: it returns ``None``
    instead of raising.  ``stream_fixes`` raises
    :class:`~pylocus.exceptions.PermissionDeniedError` (and produces no
    subscription) when access is not granted, and
    :class:`~pylocus.exceptions.ProviderUnavailableError` when the
    backend cannot be reached.
    """

    name: str

    async def last_known_fix(self) -> Fix | None: ...

    async def stream_fixes(
        self,
        request: FixRequest,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription: ...
