"""End-to-end engine tests against an in-memory provider."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeProvider, make_fix

from pylocus.config import LocusConfig
from pylocus.engine import LocusEngine
from pylocus.gate import PermissionGate
from pylocus.provider.owntracks import OwnTracksProvider
from pylocus.supervisor import LifecycleSignal, StopReason, SupervisorAction


class _Sink:
    def __init__(self) -> None:
        self.bodies: list[str] = []

    def notify(self, title: str, body: str) -> None:
        self.bodies.append(body)


def test_default_provider_is_owntracks(gate: PermissionGate) -> None:
    engine = LocusEngine(LocusConfig(), gate)
    assert isinstance(engine.provider, OwnTracksProvider)
    assert engine.provider.service_enabled()


def test_location_services_query_reaches_provider(gate: PermissionGate) -> None:
    engine = LocusEngine(LocusConfig(), gate, location_enabled=lambda: False)
    assert isinstance(engine.provider, OwnTracksProvider)
    assert not engine.provider.service_enabled()


@pytest.mark.asyncio
async def test_restart_track_and_stop(gate: PermissionGate, provider: FakeProvider) -> None:
    sink = _Sink()
    config = LocusConfig(interval_ms=2_000, min_update_interval_ms=1_000, notification_title="Engine")

    async with LocusEngine(config, gate, provider=provider, sink=sink) as engine:
        assert await engine.handle(LifecycleSignal.PROCESS_RESTARTED) is SupervisorAction.STARTED
        assert provider.requests[0].interval_ms == 2_000

        async with engine.store.subscribe() as updates:
            fix = make_fix(48.8566, 2.3522)
            provider.emit(fix)
            assert await asyncio.wait_for(updates.get(), 1.0) is fix

        assert engine.session.dispatcher is not None
        await asyncio.wait_for(engine.session.dispatcher.flush(), 1.0)
        assert sink.bodies[-1].startswith("Lat: 48.856600\nLng: 2.352200")

        assert await engine.handle(LifecycleSignal.EXPLICIT_STOP) is SupervisorAction.STOPPED
        assert engine.supervisor.stop_reason is StopReason.VOLUNTARY
        assert await engine.handle(LifecycleSignal.SYSTEM_REBOOTED) is SupervisorAction.SKIPPED_VOLUNTARY_STOP

    assert provider.live_subscriptions == 0


@pytest.mark.asyncio
async def test_acquire_uses_configured_defaults(gate: PermissionGate, provider: FakeProvider) -> None:
    provider.cached = make_fix(age=20)
    strict = LocusEngine(LocusConfig(freshness_threshold=10, acquire_timeout=0.1), gate, provider=provider)
    relaxed = LocusEngine(LocusConfig(freshness_threshold=30, acquire_timeout=0.1), gate, provider=provider)

    assert await strict.acquire() is None
    assert await relaxed.acquire() is provider.cached
    assert await strict.acquire(freshness_threshold=60) is provider.cached


@pytest.mark.asyncio
async def test_acquire_while_tracking_uses_separate_stream(gate: PermissionGate, provider: FakeProvider) -> None:
    provider.deliveries = [(0.02, make_fix(10.0, 10.0))]

    async with LocusEngine(LocusConfig(acquire_timeout=1.0), gate, provider=provider) as engine:
        await engine.handle(LifecycleSignal.PROCESS_RESTARTED)
        fix = await engine.acquire()

        assert fix is not None
        assert provider.stream_calls == 2
        assert engine.session.is_active
        assert provider.live_subscriptions == 1


@pytest.mark.asyncio
async def test_persisted_voluntary_stop_is_honoured(gate: PermissionGate, provider: FakeProvider) -> None:
    async with LocusEngine(LocusConfig(), gate, provider=provider, stop_reason=StopReason.VOLUNTARY) as engine:
        assert await engine.handle(LifecycleSignal.TASK_REMOVED) is SupervisorAction.SKIPPED_VOLUNTARY_STOP
        assert provider.stream_calls == 0
