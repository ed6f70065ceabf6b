"""Background tracking session.

A long-lived task holding at most one live provider subscription.  Every
delivered fix is published to the shared location store and summarised
to the notification sink.  Transitions happen only on explicit calls:

    STOPPED --start()--> STARTING --> ACTIVE
    ACTIVE  --stop()---> STOPPING --> STOPPED
    ACTIVE  --stream lost / access revoked--> STOPPED (reported)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pylocus.exceptions import LocusError, PermissionDeniedError, ProviderUnavailableError, SubscriptionLostError
from pylocus.gate import CapabilityGate
from pylocus.models.fix import Fix
from pylocus.models.request import FixRequest
from pylocus.notify import DEFAULT_TITLE, NotificationDispatcher, NotificationSink, format_status
from pylocus.provider.base import PositionProvider, Subscription
from pylocus.store import LocationStore

_logger = logging.getLogger(__name__)

FailureCallback = Callable[[LocusError], None]


class SessionState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class TrackingSession:
    """Keeps one fix stream open and republishes every fix.

    Parameters
    ----------
    gate
        Capability gate checked on every start.
    provider
        Positioning backend.
    store
        Shared location store receiving every fix.
    sink
        Optional notification sink; written to without blocking.
    request
        Stream configuration.
    title
        Notification title.
    on_failure
        Called when an active stream dies (normally the supervisor).
    """

    def __init__(
        self,
        gate: CapabilityGate,
        provider: PositionProvider,
        store: LocationStore,
        *,
        sink: NotificationSink | None = None,
        request: FixRequest | None = None,
        title: str = DEFAULT_TITLE,
        on_failure: FailureCallback | None = None,
        on_state_change: Callable[[SessionState], None] | None = None,
    ) -> None:
        self._gate = gate
        self._provider = provider
        self._store = store
        self._dispatcher = NotificationDispatcher(sink) if sink is not None else None
        self._request = request or FixRequest()
        self._title = title
        self.on_failure = on_failure
        self._on_state_change = on_state_change
        self._state = SessionState.STOPPED
        self._subscription: Subscription | None = None
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None
        self._live_fix_seen = False
        self.last_error: LocusError | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def has_subscription(self) -> bool:
        return self._subscription is not None

    @property
    def dispatcher(self) -> NotificationDispatcher | None:
        return self._dispatcher

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        _logger.debug("Tracking session %s -> %s", self._state, state)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                _logger.debug("on_state_change callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the fix stream.  No-op while already active.

        Raises
        ------
        PermissionDeniedError
            Access is not granted; the session stays stopped.
        ProviderUnavailableError
            The provider could not open a stream; the session stays stopped.
        SubscriptionLostError
            The stream died before the session became active.  The failure
            has already been passed to ``on_failure``.
        """
        async with self._lock:
            if self._state is SessionState.ACTIVE:
                _logger.debug("Tracking session already active")
                return

            self._loop = asyncio.get_running_loop()
            self._loop_thread = threading.get_ident()
            self._set_state(SessionState.STARTING)

            if not self._gate.has_access():
                self._set_state(SessionState.STOPPED)
                _logger.warning("Cannot start tracking: location access not granted")
                raise PermissionDeniedError("Location access not granted")

            self._live_fix_seen = False
            try:
                subscription = await self._provider.stream_fixes(
                    self._request,
                    self._on_fix,
                    self._on_stream_error,
                )
            except (PermissionDeniedError, ProviderUnavailableError) as exc:
                self.last_error = exc
                self._set_state(SessionState.STOPPED)
                _logger.warning("Cannot start tracking: %s", exc)
                raise
            except BaseException:
                self._set_state(SessionState.STOPPED)
                raise

            if self._state is not SessionState.STARTING:
                # Stream died before start() returned; on_failure already saw it.
                subscription.cancel()
                raise self.last_error or SubscriptionLostError("Fix stream lost while starting")

            self._subscription = subscription
            self._set_state(SessionState.ACTIVE)
            self.last_error = None
            _logger.info("Tracking session active provider=%s", self._provider.name)
            if self._dispatcher is not None and self._store.current is None:
                self._dispatcher.push(*format_status(None, title=self._title))

        await self._populate_from_cache()

    async def stop(self) -> None:
        """Cancel the fix stream.  No-op while already stopped."""
        async with self._lock:
            if self._state is SessionState.STOPPED:
                return
            self._set_state(SessionState.STOPPING)
            subscription, self._subscription = self._subscription, None
            if subscription is not None:
                subscription.cancel()
            self._set_state(SessionState.STOPPED)
            _logger.info("Tracking session stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def aclose(self) -> None:
        await self.stop()
        if self._dispatcher is not None:
            await self._dispatcher.aclose()

    async def __aenter__(self) -> TrackingSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Fix handling
    # ------------------------------------------------------------------

    async def _populate_from_cache(self) -> None:
        cached = await self._provider.last_known_fix()
        if cached is None:
            return
        if self._state is not SessionState.ACTIVE or self._live_fix_seen:
            _logger.debug("Discarding cached fix; a live fix already arrived")
            return
        _logger.debug("Publishing last known fix id=%s", cached.id)
        self._accept(cached)

    def _on_loop(self, callback: Callable[..., None], *args: Any) -> None:
        if self._loop is None or threading.get_ident() == self._loop_thread:
            callback(*args)
        else:
            self._loop.call_soon_threadsafe(callback, *args)

    def _on_fix(self, fix: Fix) -> None:
        self._on_loop(self._handle_fix, fix)

    def _on_stream_error(self, error: LocusError) -> None:
        self._on_loop(self._handle_stream_error, error)

    def _handle_fix(self, fix: Fix) -> None:
        if self._state not in (SessionState.STARTING, SessionState.ACTIVE):
            return
        self._live_fix_seen = True
        self._accept(fix)

    def _accept(self, fix: Fix) -> None:
        self._store.publish(fix)
        if self._dispatcher is not None:
            self._dispatcher.push(*format_status(fix, title=self._title))

    def _handle_stream_error(self, error: LocusError) -> None:
        if self._state not in (SessionState.STARTING, SessionState.ACTIVE):
            return
        _logger.warning("Tracking stream lost: %s", error)
        self._subscription = None
        self.last_error = error
        self._set_state(SessionState.STOPPED)
        if self.on_failure is not None:
            try:
                self.on_failure(error)
            except Exception:
                _logger.warning("Failure handler raised", exc_info=True)
