"""Value models used across pylocus."""

from pylocus.models.fix import Fix, describe_accuracy, format_speed, parse_timestamp
from pylocus.models.request import FixRequest, Priority

__all__ = [
    "Fix",
    "FixRequest",
    "Priority",
    "describe_accuracy",
    "format_speed",
    "parse_timestamp",
]
