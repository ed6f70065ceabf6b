"""Status notification sink and its non-blocking dispatcher.

The tracking session pushes a ``(title, body)`` status after each fix.
The sink renders it somewhere persistent (a tray icon, a status file, a
log line); pylocus only writes to it and never manages its lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable
from datetime import tzinfo
from typing import Protocol

from pylocus.models.fix import Fix

_logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Location Tracker Active"
WAITING_BODY = "Getting location..."


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None | Awaitable[None]: ...


class LoggingSink:
    """Sink that writes each status to a logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = logger or _logger
        self._level = level

    def notify(self, title: str, body: str) -> None:
        self._logger.log(self._level, "%s | %s", title, body.replace("\n", " | "))


def format_status(fix: Fix | None, *, title: str = DEFAULT_TITLE, tz: tzinfo | None = None) -> tuple[str, str]:
    """Build the status ``(title, body)`` for *fix*.

    The update time is rendered in *tz* (local time when omitted).
    """
    if fix is None:
        return title, WAITING_BODY
    updated = fix.timestamp.astimezone(tz).strftime("%H:%M:%S")
    body = f"Lat: {fix.latitude:.6f}\nLng: {fix.longitude:.6f}\nUpdated: {updated}"
    return title, body


class NotificationDispatcher:
    """Fire-and-forget delivery to a sink.

    :meth:`push` never waits on the sink.  Only the most recent status is
    buffered: a status superseded before the sink got to it is skipped,
    since the sink shows a single current line.  Synchronous sinks run in
    the default executor so a slow sink cannot stall the event loop.
    """

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink
        self._pending: tuple[str, str] | None = None
        self._wakeup: asyncio.Event | None = None
        self._idle: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self.delivered = 0

    def push(self, title: str, body: str) -> None:
        """Queue a status.  Must be called from the event loop thread."""
        self._pending = (title, body)
        self._ensure_worker()
        assert self._wakeup is not None and self._idle is not None  # noqa: S101
        self._idle.clear()
        self._wakeup.set()

    async def flush(self) -> None:
        """Wait until every queued status has been handed to the sink."""
        if self._idle is None:
            return
        await self._idle.wait()

    async def aclose(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _ensure_worker(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="pylocus-notify")

    async def _run(self) -> None:
        assert self._wakeup is not None and self._idle is not None  # noqa: S101
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            item, self._pending = self._pending, None
            if item is not None:
                await self._deliver(*item)
            if self._pending is None:
                self._idle.set()

    async def _deliver(self, title: str, body: str) -> None:
        try:
            if inspect.iscoroutinefunction(self._sink.notify):
                await self._sink.notify(title, body)
            else:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, self._sink.notify, title, body)
                if inspect.isawaitable(result):
                    await result
            self.delivered += 1
        except Exception:
            _logger.debug("Notification sink failed", exc_info=True)
