"""Engine configuration for pylocus."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pylocus.exceptions import LocusConfigError
from pylocus.models.request import FixRequest, Priority


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, raw: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(raw)
    except ValueError as exc:
        raise LocusConfigError(f"{env_key} must be a {kind.__name__}, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class OwnTracksSettings:
    """Connection details for an OwnTracks deployment.

    Fixes are streamed from the MQTT broker the phone publishes to; the
    last known fix is read from the OwnTracks Recorder HTTP API when
    ``recorder_url`` is set.
    """

    broker_host: str = "localhost"
    broker_port: int = 1883
    use_tls: bool = False
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    user: str = "user"
    device: str = "phone"
    recorder_url: str | None = None
    http_timeout: float = 5.0

    @property
    def topic(self) -> str:
        return f"owntracks/{self.user}/{self.device}"


@dataclasses.dataclass(frozen=True)
class LocusConfig:
    """Engine configuration.

    Parameters
    ----------
    freshness_threshold : float
        Maximum age in seconds at which a cached fix is used without
        requesting a new one.
    acquire_timeout : float
        Seconds the acquisition engine waits for a live fix.
    permission_poll_interval : float
        Seconds between capability checks while waiting for a live fix.
    interval_ms : int
        Background stream delivery cadence.
    min_update_interval_ms : int
        Fastest accepted delivery interval for the background stream.
    max_update_delay_ms : int
        Maximum batching delay for the background stream.
    priority : Priority
        Accuracy/power trade-off for the background stream.
    notification_title : str
        Title pushed to the notification sink with every status update.
    owntracks : OwnTracksSettings
        OwnTracks provider connection details.
    """

    freshness_threshold: float = 60.0
    acquire_timeout: float = 30.0
    permission_poll_interval: float = 0.5
    interval_ms: int = 10_000
    min_update_interval_ms: int = 5_000
    max_update_delay_ms: int = 10_000
    priority: Priority = Priority.HIGH_ACCURACY
    notification_title: str = "Location Tracker Active"
    owntracks: OwnTracksSettings = dataclasses.field(default_factory=OwnTracksSettings)

    def __post_init__(self) -> None:
        if self.freshness_threshold < 0:
            raise LocusConfigError("freshness_threshold must be >= 0")
        if self.acquire_timeout < 0:
            raise LocusConfigError("acquire_timeout must be >= 0")
        if self.permission_poll_interval <= 0:
            raise LocusConfigError("permission_poll_interval must be > 0")

    def stream_request(self) -> FixRequest:
        """Background stream request built from this configuration."""
        return FixRequest(
            interval_ms=self.interval_ms,
            min_update_interval_ms=self.min_update_interval_ms,
            max_update_delay_ms=self.max_update_delay_ms,
            priority=self.priority,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> LocusConfig:
        """Create configuration from ``LOCUS_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        LocusConfigError
            If a numeric variable cannot be parsed or a value is out of range.
        """
        env = os.environ

        owntracks_kwargs: dict[str, Any] = {}
        _ENV_OWNTRACKS_MAP: dict[str, tuple[str, type[Any]]] = {
            "LOCUS_OWNTRACKS_HOST": ("broker_host", str),
            "LOCUS_OWNTRACKS_PORT": ("broker_port", int),
            "LOCUS_OWNTRACKS_USERNAME": ("username", str),
            "LOCUS_OWNTRACKS_PASSWORD": ("password", str),
            "LOCUS_OWNTRACKS_KEEPALIVE": ("keepalive", int),
            "LOCUS_OWNTRACKS_USER": ("user", str),
            "LOCUS_OWNTRACKS_DEVICE": ("device", str),
            "LOCUS_OWNTRACKS_RECORDER_URL": ("recorder_url", str),
            "LOCUS_OWNTRACKS_HTTP_TIMEOUT": ("http_timeout", float),
        }
        for env_key, (field_name, kind) in _ENV_OWNTRACKS_MAP.items():
            val = env.get(env_key)
            if val is None:
                continue
            owntracks_kwargs[field_name] = val if kind is str else _env_number(env_key, val, kind)
        if "LOCUS_OWNTRACKS_TLS" in env:
            owntracks_kwargs["use_tls"] = _env_bool(env.get("LOCUS_OWNTRACKS_TLS"), False)

        # Allow overriding provider fields via a nested dict
        owntracks_overrides = overrides.pop("owntracks", None)
        if isinstance(owntracks_overrides, dict):
            owntracks_kwargs.update(owntracks_overrides)
        elif isinstance(owntracks_overrides, OwnTracksSettings):
            owntracks_kwargs = dataclasses.asdict(owntracks_overrides)

        config_kwargs: dict[str, Any] = {"owntracks": OwnTracksSettings(**owntracks_kwargs)}

        _ENV_CONFIG_MAP: dict[str, tuple[str, type[Any]]] = {
            "LOCUS_FRESHNESS_THRESHOLD": ("freshness_threshold", float),
            "LOCUS_ACQUIRE_TIMEOUT": ("acquire_timeout", float),
            "LOCUS_PERMISSION_POLL_INTERVAL": ("permission_poll_interval", float),
            "LOCUS_INTERVAL_MS": ("interval_ms", int),
            "LOCUS_MIN_UPDATE_INTERVAL_MS": ("min_update_interval_ms", int),
            "LOCUS_MAX_UPDATE_DELAY_MS": ("max_update_delay_ms", int),
            "LOCUS_NOTIFICATION_TITLE": ("notification_title", str),
        }
        for env_key, (field_name, kind) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            config_kwargs[field_name] = val if kind is str else _env_number(env_key, val, kind)

        priority_env = env.get("LOCUS_PRIORITY")
        if priority_env is not None and "priority" not in overrides:
            try:
                config_kwargs["priority"] = Priority(priority_env.strip().lower())
            except ValueError as exc:
                raise LocusConfigError(f"LOCUS_PRIORITY must be one of {[p.value for p in Priority]}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
