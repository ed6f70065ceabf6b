"""Custom exception hierarchy for pylocus."""

from __future__ import annotations


class LocusError(Exception):
    """Base exception for all pylocus errors."""


class LocusConfigError(LocusError):
    """Invalid or missing configuration."""


class PermissionDeniedError(LocusError):
    """Location access is not granted.

    Recoverable only by user action (granting access).  pylocus never
    retries this automatically.
    """


class ProviderUnavailableError(LocusError):
    """The positioning backend could not be reached or failed to start.

    Retried by the lifecycle supervisor on the next lifecycle signal,
    never in a tight loop.
    """

    def __init__(self, message: str, *, provider: str = "") -> None:
        self.provider = provider
        super().__init__(message)


class SubscriptionLostError(LocusError):
    """The provider dropped an active fix stream unexpectedly."""

    def __init__(self, message: str, *, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)
