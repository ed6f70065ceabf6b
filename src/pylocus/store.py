"""Shared location store.

Holds the single latest fix and broadcasts every write to all readers.
The store is an explicitly constructed object handed to the components
that need it; there is no module-level instance.

Ordering follows write order, not capture time: a late-arriving fix with
an older timestamp still replaces the current value ("latest received
wins").
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from pylocus.models.fix import Fix

_logger = logging.getLogger(__name__)

FixListener = Callable[[Fix], None]


def _wake(waiter: asyncio.Future[None]) -> None:
    def _set() -> None:
        if not waiter.done():
            waiter.set_result(None)

    loop = waiter.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        _set()
    elif not loop.is_closed():
        loop.call_soon_threadsafe(_set)


class StoreSubscription:
    """Ordered stream of fixes for one reader.

    Iterate with ``async for``; iteration ends after :meth:`close`.  The
    buffer is unbounded so a slow reader never loses a write.
    """

    def __init__(self, store: LocationStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._items: deque[Fix] = deque()
        self._waiter: asyncio.Future[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._items)

    def _push(self, fix: Fix) -> None:
        with self._lock:
            if self._closed:
                return
            self._items.append(fix)
            waiter = self._waiter
        if waiter is not None:
            _wake(waiter)

    def get_nowait(self) -> Fix | None:
        with self._lock:
            return self._items.popleft() if self._items else None

    async def get(self) -> Fix | None:
        """Next fix in write order; ``None`` once the subscription is closed."""
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                if self._items:
                    return self._items.popleft()
                if self._closed:
                    return None
                waiter: asyncio.Future[None] = loop.create_future()
                self._waiter = waiter
            try:
                await waiter
            finally:
                with self._lock:
                    if self._waiter is waiter:
                        self._waiter = None

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiter = self._waiter
        self._store._detach(self)
        if waiter is not None:
            _wake(waiter)

    def __aiter__(self) -> StoreSubscription:
        return self

    async def __anext__(self) -> Fix:
        fix = await self.get()
        if fix is None:
            raise StopAsyncIteration
        return fix

    async def __aenter__(self) -> StoreSubscription:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()


class LocationStore:
    """Single-slot, last-write-wins broadcast store.

    ``publish`` and ``subscribe`` serialize on one lock, so a reader that
    joins while a write is in progress observes either the previous value
    followed by the new one, or just the new one; never a duplicate and
    never a gap.
    """

    def __init__(self, initial: Fix | None = None) -> None:
        self._lock = threading.RLock()
        self._current = initial
        self._version = 0
        self._subscribers: list[StoreSubscription] = []
        self._listeners: list[FixListener] = []

    @property
    def current(self) -> Fix | None:
        """Non-blocking snapshot of the latest fix."""
        return self._current

    @property
    def version(self) -> int:
        """Number of successful publishes."""
        return self._version

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, fix: Fix) -> None:
        """Replace the current fix and notify every reader in publish order."""
        with self._lock:
            self._current = fix
            self._version += 1
            for subscriber in list(self._subscribers):
                subscriber._push(fix)
            for listener in list(self._listeners):
                try:
                    listener(fix)
                except Exception:
                    _logger.warning("Store listener %r failed", listener, exc_info=True)

    def subscribe(self) -> StoreSubscription:
        """Open a reader stream that starts with the current fix, if any."""
        subscription = StoreSubscription(self)
        with self._lock:
            if self._current is not None:
                subscription._push(self._current)
            self._subscribers.append(subscription)
        return subscription

    def add_listener(self, listener: FixListener) -> Callable[[], None]:
        """Call *listener* synchronously after each publish.

        Listeners run under the store lock and must return quickly.
        Returns a function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def _detach(self, subscription: StoreSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
