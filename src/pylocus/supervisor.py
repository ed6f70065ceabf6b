"""Lifecycle/restart supervisor.

Translates host lifecycle signals into tracking-session starts and
stops.  The restart policy is an explicit table rather than behaviour
spread over host callbacks, and the voluntary/involuntary distinction is
held as state (:class:`StopReason`) instead of being inferred.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from enum import StrEnum

from pylocus.exceptions import LocusError, PermissionDeniedError, ProviderUnavailableError, SubscriptionLostError
from pylocus.gate import CapabilityGate
from pylocus.session import TrackingSession

_logger = logging.getLogger(__name__)


class LifecycleSignal(StrEnum):
    TASK_REMOVED = "task_removed"
    PROCESS_KILLED = "process_killed"
    PROCESS_RESTARTED = "process_restarted"
    SYSTEM_REBOOTED = "system_rebooted"
    PACKAGE_UPDATED = "package_updated"
    EXPLICIT_STOP = "explicit_stop"


class StopReason(StrEnum):
    NONE = "none"
    VOLUNTARY = "voluntary"
    INVOLUNTARY = "involuntary"


class SupervisorAction(StrEnum):
    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    STOPPED = "stopped"
    SKIPPED_VOLUNTARY_STOP = "skipped_voluntary_stop"
    SKIPPED_NO_ACCESS = "skipped_no_access"
    START_FAILED = "start_failed"


#: Whether each signal re-arms the session (subject to the gate and to a
#: standing voluntary stop).  EXPLICIT_STOP is the only signal that stops.
RESTART_POLICY: dict[LifecycleSignal, bool] = {
    LifecycleSignal.TASK_REMOVED: True,
    LifecycleSignal.PROCESS_KILLED: True,
    LifecycleSignal.PROCESS_RESTARTED: True,
    LifecycleSignal.SYSTEM_REBOOTED: True,
    LifecycleSignal.PACKAGE_UPDATED: True,
    LifecycleSignal.EXPLICIT_STOP: False,
}


class LifecycleSupervisor:
    """Re-arms a :class:`TrackingSession` on lifecycle signals.

    Parameters
    ----------
    session
        The session to supervise.  The supervisor installs itself as the
        session's failure handler.
    gate
        Capability gate; no start is attempted while access is denied.
    stop_reason
        Stop reason carried over from a previous process, if the host
        persisted it.  A standing ``VOLUNTARY`` stop suppresses restarts
        until :meth:`resume` is called.
    """

    def __init__(
        self,
        session: TrackingSession,
        gate: CapabilityGate,
        *,
        stop_reason: StopReason = StopReason.NONE,
    ) -> None:
        self._session = session
        self._gate = gate
        self._stop_reason = stop_reason
        self.last_failure: LocusError | None = None
        self.last_action: SupervisorAction | None = None
        self.failure_count = 0
        session.on_failure = self._record_failure

    @property
    def stop_reason(self) -> StopReason:
        return self._stop_reason

    async def handle(self, signal: LifecycleSignal) -> SupervisorAction:
        """Apply the restart policy to *signal* and return what was done."""
        _logger.debug("Lifecycle signal %s (stop_reason=%s)", signal, self._stop_reason)
        if not RESTART_POLICY[signal]:
            self._stop_reason = StopReason.VOLUNTARY
            await self._session.stop()
            action = SupervisorAction.STOPPED
        elif self._stop_reason is StopReason.VOLUNTARY:
            _logger.info("Not restarting after %s: tracking was stopped by the user", signal)
            action = SupervisorAction.SKIPPED_VOLUNTARY_STOP
        else:
            if signal is LifecycleSignal.PROCESS_KILLED:
                self._stop_reason = StopReason.INVOLUNTARY
            action = await self._arm()
        self.last_action = action
        _logger.debug("Lifecycle signal %s -> %s", signal, action)
        return action

    async def resume(self) -> SupervisorAction:
        """Explicit user start: clear a voluntary stop and start tracking."""
        self._stop_reason = StopReason.NONE
        action = await self._arm()
        self.last_action = action
        return action

    async def run(self, signals: AsyncIterable[LifecycleSignal]) -> None:
        """Handle every signal from *signals* until the iterable ends."""
        async for signal in signals:
            await self.handle(signal)

    async def _arm(self) -> SupervisorAction:
        if not self._gate.has_access():
            _logger.info("Not starting tracking: location access not granted")
            return SupervisorAction.SKIPPED_NO_ACCESS
        if self._session.is_active:
            return SupervisorAction.ALREADY_ACTIVE
        try:
            await self._session.start()
        except PermissionDeniedError:
            return SupervisorAction.SKIPPED_NO_ACCESS
        except ProviderUnavailableError as exc:
            self._record_failure(exc)
            return SupervisorAction.START_FAILED
        except SubscriptionLostError:
            # Reported through the session's on_failure before start() raised.
            return SupervisorAction.START_FAILED
        self._stop_reason = StopReason.NONE
        self.last_failure = None
        return SupervisorAction.STARTED

    def _record_failure(self, error: LocusError) -> None:
        # Re-armed on the next lifecycle signal, never from here.
        self.last_failure = error
        self.failure_count += 1
        if self._stop_reason is not StopReason.VOLUNTARY:
            self._stop_reason = StopReason.INVOLUNTARY
        _logger.warning("Tracking failure recorded (%d so far): %s", self.failure_count, error)
