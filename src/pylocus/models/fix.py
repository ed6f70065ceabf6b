"""Position fix model.

A :class:`Fix` is a single immutable positioning reading.  Fixes are only
built by provider adapters (or the acquisition engine when wrapping a raw
provider reading) and are never mutated afterwards; the shared location
store simply replaces the one it holds.
"""

from __future__ import annotations

import math
import secrets
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

# Threshold to distinguish epoch seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000

_KMH_PER_MS = 3.6


def parse_timestamp(value: Any) -> datetime:
    """Coerce epoch seconds/milliseconds or a datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    return value


FixTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]


def _new_fix_id() -> str:
    return f"fix_{secrets.token_hex(8)}"


def _safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


class Fix(BaseModel):
    """A single positioning reading.

    Parameters
    ----------
    latitude : float
        Latitude in degrees, ``[-90, 90]``.
    longitude : float
        Longitude in degrees, ``[-180, 180]``.
    timestamp : datetime
        When the reading was captured (UTC).  Epoch seconds or
        milliseconds are accepted and converted.
    accuracy : float or None
        Horizontal accuracy radius in meters.
    altitude : float or None
        Altitude in meters.
    bearing : float or None
        Heading in degrees, ``[0, 360)``.
    speed : float or None
        Ground speed in m/s.
    provider : str or None
        Identifier of the source that produced the reading.
    id : str
        Unique identifier, generated when not supplied.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    timestamp: FixTimestamp = Field(default_factory=lambda: datetime.now(UTC))
    accuracy: float | None = Field(default=None, ge=0.0)
    altitude: float | None = None
    bearing: float | None = Field(default=None, ge=0.0, lt=360.0)
    speed: float | None = Field(default=None, ge=0.0)
    provider: str | None = None
    id: str = Field(default_factory=_new_fix_id)

    def age(self, now: datetime | None = None) -> float:
        """Seconds elapsed between capture and *now* (defaults to current time)."""
        reference = now if now is not None else datetime.now(UTC)
        return (reference - self.timestamp).total_seconds()

    @property
    def speed_kmh(self) -> float | None:
        if self.speed is None:
            return None
        return self.speed * _KMH_PER_MS

    @classmethod
    def from_owntracks(cls, payload: dict[str, Any], *, provider: str = "owntracks") -> Fix:
        """Build a fix from an OwnTracks ``_type: location`` message.

        OwnTracks reports ``vel`` in km/h and ``cog`` in degrees; both are
        converted to the units of this model.  Sentinel values OwnTracks
        uses for "unknown" (negative accuracy/speed) are dropped.

        Raises
        ------
        ValueError
            If the payload is not a location message or lacks coordinates.
        """
        if payload.get("_type", "location") != "location":
            raise ValueError(f"Not an OwnTracks location message: _type={payload.get('_type')!r}")

        lat = _safe_float(payload.get("lat"))
        lon = _safe_float(payload.get("lon"))
        if lat is None or lon is None:
            raise ValueError("OwnTracks location message missing lat/lon")

        tst = _safe_float(payload.get("tst"))
        accuracy = _safe_float(payload.get("acc"))
        velocity = _safe_float(payload.get("vel"))
        course = _safe_float(payload.get("cog"))

        values: dict[str, Any] = {
            "latitude": lat,
            "longitude": lon,
            "altitude": _safe_float(payload.get("alt")),
            "accuracy": accuracy if accuracy is not None and accuracy >= 0 else None,
            "speed": velocity / _KMH_PER_MS if velocity is not None and velocity >= 0 else None,
            "bearing": course % 360.0 if course is not None and course >= 0 else None,
            "provider": provider,
        }
        if tst is not None:
            values["timestamp"] = tst
        return cls(**values)


def describe_accuracy(accuracy: float | None) -> str:
    """Human-readable accuracy grade, e.g. ``"Good (±8m)"``."""
    if accuracy is None:
        return "Unknown"
    meters = int(accuracy)
    if accuracy <= 5:
        return f"Excellent (±{meters}m)"
    if accuracy <= 10:
        return f"Good (±{meters}m)"
    if accuracy <= 50:
        return f"Fair (±{meters}m)"
    return f"Poor (±{meters}m)"


def format_speed(speed_ms: float | None) -> str:
    if speed_ms is not None and speed_ms > 0:
        return f"{speed_ms * _KMH_PER_MS:.1f} km/h"
    return "0 km/h"
