"""High-level wiring of the location engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pylocus.acquisition import FixAcquirer
from pylocus.config import LocusConfig
from pylocus.gate import CapabilityGate
from pylocus.models.fix import Fix
from pylocus.notify import NotificationSink
from pylocus.provider.base import PositionProvider
from pylocus.provider.owntracks import OwnTracksProvider
from pylocus.session import TrackingSession
from pylocus.store import LocationStore
from pylocus.supervisor import LifecycleSignal, LifecycleSupervisor, StopReason, SupervisorAction


class LocusEngine:
    """Owns one store, session, supervisor and acquirer for a process.

    Usage::

        async with LocusEngine(config, gate) as engine:
            await engine.handle(LifecycleSignal.PROCESS_RESTARTED)
            fix = await engine.acquire()
    """

    def __init__(
        self,
        config: LocusConfig,
        gate: CapabilityGate,
        *,
        provider: PositionProvider | None = None,
        sink: NotificationSink | None = None,
        stop_reason: StopReason = StopReason.NONE,
        location_enabled: Callable[[], bool] | None = None,
    ) -> None:
        self.config = config
        self.gate = gate
        self.provider = provider or OwnTracksProvider(config.owntracks, gate, location_enabled=location_enabled)
        self.store = LocationStore()
        self.session = TrackingSession(
            gate,
            self.provider,
            self.store,
            sink=sink,
            request=config.stream_request(),
            title=config.notification_title,
        )
        self.supervisor = LifecycleSupervisor(self.session, gate, stop_reason=stop_reason)
        self.acquirer = FixAcquirer(
            gate,
            self.provider,
            permission_poll_interval=config.permission_poll_interval,
        )

    async def __aenter__(self) -> LocusEngine:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.session.aclose()

    async def handle(self, signal: LifecycleSignal) -> SupervisorAction:
        return await self.supervisor.handle(signal)

    async def acquire(
        self,
        freshness_threshold: float | None = None,
        timeout: float | None = None,
    ) -> Fix | None:
        """One-shot acquisition using configured defaults where not given."""
        threshold = self.config.freshness_threshold if freshness_threshold is None else freshness_threshold
        effective_timeout = self.config.acquire_timeout if timeout is None else timeout
        return await self.acquirer.acquire(threshold, effective_timeout)
