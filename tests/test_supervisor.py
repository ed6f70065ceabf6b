from __future__ import annotations

import pytest
from conftest import FakeProvider

from pylocus.exceptions import ProviderUnavailableError, SubscriptionLostError
from pylocus.gate import PermissionGate
from pylocus.session import TrackingSession
from pylocus.store import LocationStore
from pylocus.supervisor import (
    RESTART_POLICY,
    LifecycleSignal,
    LifecycleSupervisor,
    StopReason,
    SupervisorAction,
)


def _build(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore, **kwargs: object
) -> tuple[TrackingSession, LifecycleSupervisor]:
    session = TrackingSession(gate, provider, store)
    supervisor = LifecycleSupervisor(session, gate, **kwargs)  # type: ignore[arg-type]
    return session, supervisor


def test_policy_table_covers_every_signal() -> None:
    assert set(RESTART_POLICY) == set(LifecycleSignal)
    assert RESTART_POLICY[LifecycleSignal.EXPLICIT_STOP] is False


@pytest.mark.asyncio
async def test_process_restarted_starts_session(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore
) -> None:
    session, supervisor = _build(gate, provider, store)

    action = await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    assert action is SupervisorAction.STARTED
    assert session.is_active
    assert provider.stream_calls == 1
    await session.aclose()


@pytest.mark.asyncio
async def test_process_restarted_without_access_does_not_start(provider: FakeProvider, store: LocationStore) -> None:
    gate = PermissionGate()
    provider.gate = gate
    session, supervisor = _build(gate, provider, store)

    action = await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    assert action is SupervisorAction.SKIPPED_NO_ACCESS
    assert not session.is_active
    assert provider.stream_calls == 0


@pytest.mark.asyncio
async def test_explicit_stop_never_restarts(gate: PermissionGate, provider: FakeProvider, store: LocationStore) -> None:
    session, supervisor = _build(gate, provider, store)
    await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    assert await supervisor.handle(LifecycleSignal.EXPLICIT_STOP) is SupervisorAction.STOPPED
    assert supervisor.stop_reason is StopReason.VOLUNTARY
    assert not session.is_active

    for signal in (
        LifecycleSignal.TASK_REMOVED,
        LifecycleSignal.PROCESS_KILLED,
        LifecycleSignal.PROCESS_RESTARTED,
        LifecycleSignal.SYSTEM_REBOOTED,
        LifecycleSignal.PACKAGE_UPDATED,
    ):
        assert await supervisor.handle(signal) is SupervisorAction.SKIPPED_VOLUNTARY_STOP

    assert provider.stream_calls == 1
    assert not session.is_active


@pytest.mark.asyncio
async def test_explicit_stop_on_stopped_session_does_not_start(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore
) -> None:
    _session, supervisor = _build(gate, provider, store)

    await supervisor.handle(LifecycleSignal.EXPLICIT_STOP)

    assert provider.stream_calls == 0


@pytest.mark.asyncio
async def test_resume_clears_voluntary_stop(gate: PermissionGate, provider: FakeProvider, store: LocationStore) -> None:
    session, supervisor = _build(gate, provider, store, stop_reason=StopReason.VOLUNTARY)

    assert await supervisor.handle(LifecycleSignal.SYSTEM_REBOOTED) is SupervisorAction.SKIPPED_VOLUNTARY_STOP
    assert await supervisor.resume() is SupervisorAction.STARTED
    assert supervisor.stop_reason is StopReason.NONE
    assert session.is_active
    await session.aclose()


@pytest.mark.asyncio
async def test_process_killed_restarts(gate: PermissionGate, provider: FakeProvider, store: LocationStore) -> None:
    session, supervisor = _build(gate, provider, store)

    action = await supervisor.handle(LifecycleSignal.PROCESS_KILLED)

    assert action is SupervisorAction.STARTED
    assert session.is_active
    await session.aclose()


@pytest.mark.asyncio
async def test_signal_while_active_is_noop(gate: PermissionGate, provider: FakeProvider, store: LocationStore) -> None:
    session, supervisor = _build(gate, provider, store)
    await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    action = await supervisor.handle(LifecycleSignal.TASK_REMOVED)

    assert action is SupervisorAction.ALREADY_ACTIVE
    assert provider.stream_calls == 1
    await session.aclose()


@pytest.mark.asyncio
async def test_stream_loss_recorded_and_rearmed_on_next_signal(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore
) -> None:
    session, supervisor = _build(gate, provider, store)
    await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    provider.lose_stream(SubscriptionLostError("dropped"))

    assert not session.is_active
    assert supervisor.stop_reason is StopReason.INVOLUNTARY
    assert isinstance(supervisor.last_failure, SubscriptionLostError)
    assert supervisor.failure_count == 1
    # No restart happens until the next lifecycle signal.
    assert provider.stream_calls == 1

    assert await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED) is SupervisorAction.STARTED
    assert provider.stream_calls == 2
    assert supervisor.last_failure is None
    await session.aclose()


@pytest.mark.asyncio
async def test_provider_unavailable_reported_not_retried(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore
) -> None:
    provider.open_error = ProviderUnavailableError("broker down")
    session, supervisor = _build(gate, provider, store)

    action = await supervisor.handle(LifecycleSignal.SYSTEM_REBOOTED)

    assert action is SupervisorAction.START_FAILED
    assert provider.stream_calls == 1
    assert isinstance(supervisor.last_failure, ProviderUnavailableError)
    assert not session.is_active


@pytest.mark.asyncio
async def test_run_consumes_signal_stream(gate: PermissionGate, provider: FakeProvider, store: LocationStore) -> None:
    session, supervisor = _build(gate, provider, store)

    async def _signals():
        yield LifecycleSignal.PACKAGE_UPDATED
        yield LifecycleSignal.EXPLICIT_STOP

    await supervisor.run(_signals())

    assert supervisor.last_action is SupervisorAction.STOPPED
    assert provider.stream_calls == 1
    assert not session.is_active


@pytest.mark.asyncio
async def test_stream_lost_during_start_is_not_reported_as_started(
    gate: PermissionGate, provider: FakeProvider, store: LocationStore
) -> None:
    provider.fail_on_open = SubscriptionLostError("dropped during connect")
    session, supervisor = _build(gate, provider, store)

    action = await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED)

    assert action is SupervisorAction.START_FAILED
    assert not session.is_active
    assert supervisor.last_failure is provider.fail_on_open
    assert supervisor.failure_count == 1
    assert supervisor.stop_reason is StopReason.INVOLUNTARY

    provider.fail_on_open = None
    assert await supervisor.handle(LifecycleSignal.PROCESS_RESTARTED) is SupervisorAction.STARTED
    await session.aclose()
