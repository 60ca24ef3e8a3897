"""Domain errors raised by services and translated to HTTP in the routers."""

from __future__ import annotations


class SafeGuardError(Exception):
    """Base class for SafeGuard domain errors."""


class Unauthorized(SafeGuardError):
    """Missing or invalid credential."""


class Forbidden(SafeGuardError):
    """Authenticated, but not allowed to access this resource."""


class NoGuardians(SafeGuardError):
    """SOS triggered with an empty guardian directory."""


class CapacityExceeded(SafeGuardError):
    """Guardian directory is full."""


class RateLimited(SafeGuardError):
    """Too many SOS triggers inside the rate window."""

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SessionNotActive(SafeGuardError):
    """Location published outside an active SOS episode."""


class TransportUnavailable(SafeGuardError):
    """Notification backend is not configured."""


class TransportError(SafeGuardError):
    """A single call or text could not be sent."""
