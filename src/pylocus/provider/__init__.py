"""Position provider adapters."""

from pylocus.provider.base import ErrorCallback, FixCallback, PositionProvider, Subscription
from pylocus.provider.owntracks import OwnTracksProvider

__all__ = [
    "ErrorCallback",
    "FixCallback",
    "OwnTracksProvider",
    "PositionProvider",
    "Subscription",
]
