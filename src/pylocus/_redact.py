"""Helpers for safe debug logging.

Raw provider payloads carry broker credentials and precise coordinates.
Credentials are replaced outright; coordinates are coarsened to roughly
100 m so DEBUG logs stay useful without pinpointing the device.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "token",
        "authorization",
        "cookie",
        "secret",
        # OwnTracks encrypted payload blob
        "data",
    }
)

_COORDINATE_KEYS: frozenset[str] = frozenset({"lat", "lon", "latitude", "longitude"})

#: Decimal places kept for coordinates in logs (~110 m at the equator).
COORDINATE_LOG_PRECISION = 3


def coarsen(value: float, places: int = COORDINATE_LOG_PRECISION) -> float:
    return round(value, places)


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets removed and coordinates coarsened."""
    if _depth > 10:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SECRET_KEYS:
                cleaned[key] = "<redacted>"
            elif lowered in _COORDINATE_KEYS and isinstance(v, (int, float)) and not isinstance(v, bool):
                cleaned[key] = coarsen(float(v))
            else:
                cleaned[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return cleaned

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
