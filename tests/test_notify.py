from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta, timezone

import pytest

from pylocus.models.fix import Fix
from pylocus.notify import LoggingSink, NotificationDispatcher, format_status


def _fix() -> Fix:
    return Fix(latitude=40.7128, longitude=-74.006, timestamp=datetime(2024, 3, 9, 14, 5, 7, tzinfo=UTC))


def test_format_status_waiting() -> None:
    assert format_status(None) == ("Location Tracker Active", "Getting location...")


def test_format_status_with_fix() -> None:
    title, body = format_status(_fix(), title="Tracking", tz=UTC)

    assert title == "Tracking"
    assert body == "Lat: 40.712800\nLng: -74.006000\nUpdated: 14:05:07"


def test_format_status_renders_in_given_zone() -> None:
    _title, body = format_status(_fix(), tz=timezone(timedelta(hours=2)))
    assert body.endswith("Updated: 16:05:07")


def test_logging_sink_writes_single_line(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingSink(logging.getLogger("pylocus.test"))

    with caplog.at_level(logging.INFO, logger="pylocus.test"):
        sink.notify("Title", "a\nb")

    assert "Title | a | b" in caplog.text


class _SyncSink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> None:
        self.messages.append((title, body))


class _AsyncSink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.gate = asyncio.Event()

    async def notify(self, title: str, body: str) -> None:
        await self.gate.wait()
        self.messages.append((title, body))


@pytest.mark.asyncio
async def test_dispatcher_delivers_to_sync_sink() -> None:
    sink = _SyncSink()
    dispatcher = NotificationDispatcher(sink)

    dispatcher.push("t", "b1")
    await asyncio.wait_for(dispatcher.flush(), 1.0)

    assert sink.messages == [("t", "b1")]
    assert dispatcher.delivered == 1
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_dispatcher_keeps_only_latest_while_sink_busy() -> None:
    sink = _AsyncSink()
    dispatcher = NotificationDispatcher(sink)

    dispatcher.push("t", "first")
    await asyncio.sleep(0)  # worker picks up "first" and blocks in the sink
    for i in range(5):
        dispatcher.push("t", f"update {i}")
    sink.gate.set()
    await asyncio.wait_for(dispatcher.flush(), 1.0)

    assert sink.messages == [("t", "first"), ("t", "update 4")]
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_push_returns_without_waiting_for_sink() -> None:
    sink = _AsyncSink()
    dispatcher = NotificationDispatcher(sink)

    dispatcher.push("t", "b")

    assert sink.messages == []
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_sink_failure_is_contained() -> None:
    class _Broken:
        def notify(self, title: str, body: str) -> None:
            raise RuntimeError("display gone")

    dispatcher = NotificationDispatcher(_Broken())
    dispatcher.push("t", "b")
    await asyncio.wait_for(dispatcher.flush(), 1.0)

    assert dispatcher.delivered == 0
    dispatcher.push("t", "again")
    await asyncio.wait_for(dispatcher.flush(), 1.0)
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_flush_without_pushes_returns() -> None:
    dispatcher = NotificationDispatcher(_SyncSink())
    await asyncio.wait_for(dispatcher.flush(), 0.1)
    await dispatcher.aclose()
