from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from pylocus.exceptions import LocusError, PermissionDeniedError
from pylocus.gate import PermissionGate
from pylocus.models.fix import Fix
from pylocus.models.request import FixRequest
from pylocus.provider.base import ErrorCallback, FixCallback, Subscription
from pylocus.store import LocationStore


def make_fix(lat: float = 52.3676, lon: float = 4.9041, *, age: float = 0.0, **extra: object) -> Fix:
    return Fix(
        latitude=lat,
        longitude=lon,
        timestamp=datetime.now(UTC) - timedelta(seconds=age),
        **extra,  # type: ignore[arg-type]
    )


@dataclass
class FakeProvider:
    """In-memory provider that records every call.

    ``deliveries`` is a schedule of ``(delay_seconds, fix)`` pairs replayed
    on every stream opened.
    """

    gate: PermissionGate
    name: str = "fake"
    cached: Fix | None = None
    cached_delay: float = 0.0
    deliveries: list[tuple[float, Fix]] = field(default_factory=list)
    open_error: LocusError | None = None
    fail_on_open: LocusError | None = None
    stream_calls: int = 0
    last_known_calls: int = 0
    teardown_calls: int = 0
    requests: list[FixRequest] = field(default_factory=list)
    subscriptions: list[Subscription] = field(default_factory=list)

    async def last_known_fix(self) -> Fix | None:
        self.last_known_calls += 1
        if self.cached_delay:
            await asyncio.sleep(self.cached_delay)
        return self.cached

    async def stream_fixes(
        self,
        request: FixRequest,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        self.stream_calls += 1
        self.requests.append(request)
        if not self.gate.has_access():
            raise PermissionDeniedError("denied")
        if self.open_error is not None:
            raise self.open_error

        subscription = Subscription(on_fix, on_error, label=f"fake-{self.stream_calls}")
        loop = asyncio.get_running_loop()
        handles = [loop.call_later(delay, subscription.deliver, fix) for delay, fix in self.deliveries]

        def _teardown() -> None:
            self.teardown_calls += 1
            for handle in handles:
                handle.cancel()

        subscription.attach_teardown(_teardown)
        self.subscriptions.append(subscription)
        if self.fail_on_open is not None:
            subscription.fail(self.fail_on_open)
        return subscription

    @property
    def live_subscriptions(self) -> int:
        return sum(1 for sub in self.subscriptions if sub.active)

    def emit(self, fix: Fix) -> None:
        for sub in self.subscriptions:
            sub.deliver(fix)

    def lose_stream(self, error: LocusError) -> None:
        for sub in self.subscriptions:
            sub.fail(error)


@pytest.fixture
def gate() -> PermissionGate:
    g = PermissionGate()
    g.grant()
    return g


@pytest.fixture
def provider(gate: PermissionGate) -> FakeProvider:
    return FakeProvider(gate=gate)


@pytest.fixture
def store() -> LocationStore:
    return LocationStore()
