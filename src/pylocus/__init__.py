"""pylocus - Location acquisition and availability engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylocus")
except PackageNotFoundError:
    __version__ = "0+local"

from pylocus.acquisition import FixAcquirer
from pylocus.config import LocusConfig, OwnTracksSettings
from pylocus.engine import LocusEngine
from pylocus.exceptions import (
    LocusConfigError,
    LocusError,
    PermissionDeniedError,
    ProviderUnavailableError,
    SubscriptionLostError,
)
from pylocus.gate import CallableGate, CapabilityGate, PermissionGate, Permissions, watch_access
from pylocus.models import Fix, FixRequest, Priority, describe_accuracy, format_speed
from pylocus.notify import LoggingSink, NotificationDispatcher, NotificationSink, format_status
from pylocus.provider import OwnTracksProvider, PositionProvider, Subscription
from pylocus.session import SessionState, TrackingSession
from pylocus.store import LocationStore, StoreSubscription
from pylocus.supervisor import LifecycleSignal, LifecycleSupervisor, StopReason, SupervisorAction

__all__ = [
    "__version__",
    "CallableGate",
    "CapabilityGate",
    "Fix",
    "FixAcquirer",
    "FixRequest",
    "LifecycleSignal",
    "LifecycleSupervisor",
    "LocationStore",
    "LocusConfig",
    "LocusConfigError",
    "LocusEngine",
    "LocusError",
    "LoggingSink",
    "NotificationDispatcher",
    "NotificationSink",
    "OwnTracksProvider",
    "OwnTracksSettings",
    "PermissionDeniedError",
    "PermissionGate",
    "Permissions",
    "PositionProvider",
    "Priority",
    "ProviderUnavailableError",
    "SessionState",
    "StopReason",
    "StoreSubscription",
    "Subscription",
    "SubscriptionLostError",
    "SupervisorAction",
    "TrackingSession",
    "describe_accuracy",
    "format_speed",
    "format_status",
    "watch_access",
]
