"""OwnTracks position provider.

Live fixes come from the MQTT broker the OwnTracks app publishes to
(``owntracks/<user>/<device>``).  The last known fix is read from the
OwnTracks Recorder HTTP API when a recorder URL is configured.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, cast

import aiohttp
import paho.mqtt.client as mqtt

from pylocus._redact import coarsen, redact_for_log
from pylocus.config import OwnTracksSettings
from pylocus.exceptions import LocusError, PermissionDeniedError, ProviderUnavailableError, SubscriptionLostError
from pylocus.gate import CapabilityGate
from pylocus.models.fix import Fix
from pylocus.models.request import FixRequest
from pylocus.provider.base import ErrorCallback, FixCallback, Subscription

_logger = logging.getLogger(__name__)


def decode_location_payload(payload: bytes, *, provider: str = "owntracks") -> Fix | None:
    """Decode an OwnTracks MQTT payload.

    Returns ``None`` for valid messages that are not location reports
    (transitions, waypoints, card messages, ...).

    Raises
    ------
    ValueError
        If the payload is not JSON, not an object, or a malformed location.
    """
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("OwnTracks payload is not a JSON object")
    if parsed.get("_type") != "location":
        return None
    return Fix.from_owntracks(parsed, provider=provider)


def latest_from_recorder(entries: Any, *, provider: str = "owntracks") -> Fix | None:
    """Pick the newest parseable location from a Recorder ``/api/0/last`` response."""
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        return None

    best: Fix | None = None
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            fix = Fix.from_owntracks(entry, provider=provider)
        except ValueError:
            _logger.debug("Skipping unparseable recorder entry %s", redact_for_log(entry))
            continue
        if best is None or fix.timestamp > best.timestamp:
            best = fix
    return best


class OwnTracksMqttRuntime:
    """Threaded paho-mqtt client that hands decoded fixes to an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        settings: OwnTracksSettings,
        on_fix: Callable[[Fix], None],
        on_lost: Callable[[LocusError], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._settings = settings
        self._on_fix = on_fix
        self._on_lost = on_lost
        self._logger = logger or _logger
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect and subscribe.  Blocks until the TCP connection is made.

        Raises
        ------
        ProviderUnavailableError
            If the broker cannot be reached.
        """
        self.stop()
        settings = self._settings
        topic = settings.topic
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s tls=%s",
            settings.broker_host,
            settings.broker_port,
            topic,
            settings.use_tls,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.use_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._report_lost(f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected reason=%s, subscribing topic=%s", reason_code, topic)
            c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                fix = decode_location_payload(msg.payload, provider=f"owntracks:{settings.device}")
                if fix is None:
                    return
                self._logger.debug(
                    "Received location topic=%s lat=%s lon=%s",
                    msg.topic,
                    coarsen(fix.latitude),
                    coarsen(fix.longitude),
                )
                self._loop.call_soon_threadsafe(self._on_fix, fix)
            except Exception:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected unexpectedly: %s", reason_code)
                self._report_lost(f"disconnected: {reason_code}")

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(settings.broker_host, settings.broker_port, keepalive=settings.keepalive)
        except OSError as exc:
            raise ProviderUnavailableError(
                f"Cannot reach MQTT broker {settings.broker_host}:{settings.broker_port}: {exc}",
                provider="owntracks",
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect the current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def stop_in_background(self) -> None:
        """Schedule :meth:`stop` on the default executor.

        ``loop_stop`` joins the paho network thread, so it must not run on
        the event loop thread.  Safe to call from any thread; falls back to
        a direct stop once the loop is closed.
        """
        loop = self._loop
        if loop.is_closed():
            self.stop()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.run_in_executor(None, self.stop)
        else:
            loop.call_soon_threadsafe(loop.run_in_executor, None, self.stop)

    def _report_lost(self, reason: str) -> None:
        error = SubscriptionLostError(f"OwnTracks stream lost ({reason})", reason=reason)
        self._loop.call_soon_threadsafe(self._on_lost, error)


class OwnTracksProvider:
    """Position provider backed by an OwnTracks broker and recorder."""

    name = "owntracks"

    def __init__(
        self,
        settings: OwnTracksSettings,
        gate: CapabilityGate,
        *,
        session: aiohttp.ClientSession | None = None,
        location_enabled: Callable[[], bool] | None = None,
    ) -> None:
        self._settings = settings
        self._gate = gate
        self._http_session = session
        self._location_enabled = location_enabled

    def service_enabled(self) -> bool:
        """Whether the device reports location services as switched on.

        Without a ``location_enabled`` query the service is assumed on.
        """
        if self._location_enabled is None:
            return True
        try:
            return bool(self._location_enabled())
        except Exception:
            _logger.warning("Location service query failed; treating services as disabled", exc_info=True)
            return False

    async def last_known_fix(self) -> Fix | None:
        """Newest fix known to the recorder, or ``None``.

        Never raises: network errors, timeouts and malformed responses
        all resolve to ``None``.
        """
        if not self._gate.has_access():
            return None
        if not self.service_enabled():
            _logger.warning("Location services are disabled; no last known fix")
            return None
        base_url = self._settings.recorder_url
        if not base_url:
            return None

        url = f"{base_url.rstrip('/')}/api/0/last"
        params = {"user": self._settings.user, "device": self._settings.device}
        timeout = aiohttp.ClientTimeout(total=self._settings.http_timeout)
        try:
            if self._http_session is not None:
                entries = await self._fetch_json(self._http_session, url, params, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    entries = await self._fetch_json(session, url, params, timeout)
        except (aiohttp.ClientError, TimeoutError, ValueError):
            _logger.warning("Last known fix lookup failed url=%s", url, exc_info=True)
            return None
        return latest_from_recorder(entries, provider=f"owntracks:{self._settings.device}")

    @staticmethod
    async def _fetch_json(
        session: aiohttp.ClientSession,
        url: str,
        params: dict[str, str],
        timeout: aiohttp.ClientTimeout,
    ) -> Any:
        async with session.get(url, params=params, timeout=timeout) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def stream_fixes(
        self,
        request: FixRequest,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to the device's location topic.

        The OwnTracks app decides its own publish cadence; the request's
        ``min_update_interval_ms`` is enforced here by dropping deliveries
        that arrive too close together.
        """
        if not self._gate.has_access():
            raise PermissionDeniedError("Location access not granted; cannot open fix stream")
        if not self.service_enabled():
            raise ProviderUnavailableError("Location services are disabled", provider=self.name)

        loop = asyncio.get_running_loop()
        subscription = Subscription(
            on_fix,
            on_error,
            min_interval_s=request.min_update_interval_ms / 1000.0,
            label=self._settings.topic,
        )

        def _deliver(fix: Fix) -> None:
            if not self._gate.has_access():
                subscription.fail(PermissionDeniedError("Location access revoked while streaming"))
                return
            subscription.deliver(fix)

        runtime = OwnTracksMqttRuntime(
            loop=loop,
            settings=self._settings,
            on_fix=_deliver,
            on_lost=subscription.fail,
        )
        started = loop.run_in_executor(None, runtime.start)
        try:
            await asyncio.shield(started)
        except asyncio.CancelledError:
            # The connect keeps running in the executor; tear it down once it lands.
            started.add_done_callback(lambda f: f.cancelled() or f.exception() or runtime.stop_in_background())
            raise
        subscription.attach_teardown(runtime.stop_in_background)
        _logger.debug(
            "OwnTracks stream open topic=%s priority=%s interval_ms=%d",
            self._settings.topic,
            request.priority,
            request.interval_ms,
        )
        return subscription
