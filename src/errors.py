from enum import Enum
from typing import Optional


class AuthFailure(Enum):
    """Reasons a login attempt can fail."""
    REJECTED = "rejected"  # Credentials refused or no session cookie issued.
    NO_SERVICE_FOUND = "no_service_found"  # Account controls no alarm service.
    TRANSPORT = "transport"  # Network failure during login or discovery.


class DiscoveryFailure(Enum):
    """Reasons service discovery can fail."""
    EMPTY = "empty"
    REJECTED = "rejected"
    TRANSPORT = "transport"


class PollFailure(Enum):
    """Reasons a status fetch can fail."""
    NO_SESSION = "no_session"
    BUSY = "busy"
    MALFORMED = "malformed"
    TRANSPORT = "transport"
    UNEXPECTED_STATUS = "unexpected_status"
    CANCELLED = "cancelled"


class CommandFailure(Enum):
    """Reasons a code submission can fail."""
    REJECTED = "rejected"
    SERVICE_MODE = "service_mode"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    REDIRECT_UNSUPPORTED = "redirect_unsupported"
    SESSION_EXPIRED = "session_expired"
    BUSY = "busy"
    FAILED = "failed"
    TRANSPORT = "transport"
    NOT_CONTROLLABLE = "not_controllable"


class JablotronError(Exception):
    """Base class for all errors raised by the Jablotron cloud client."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (status {self.status})"
        return self.message


class ConfigError(JablotronError):
    """Raised when the supplied configuration fails validation."""
    pass


class TransportError(JablotronError):
    """DNS, TCP, TLS, timeout or response decoding failure."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class AuthError(JablotronError):
    """Login failed. Reported to the host, never retried automatically."""

    def __init__(
        self, reason: AuthFailure, message: str, status: Optional[int] = None
    ) -> None:
        super().__init__(message, status)
        self.reason = reason


class DiscoveryError(JablotronError):
    """Listing or opening the alarm service failed."""

    def __init__(
        self, reason: DiscoveryFailure, message: str, status: Optional[int] = None
    ) -> None:
        super().__init__(message, status)
        self.reason = reason


class PollError(JablotronError):
    """Fetching the current panel state failed."""

    def __init__(
        self, reason: PollFailure, message: str, status: Optional[int] = None
    ) -> None:
        super().__init__(message, status)
        self.reason = reason


class CommandError(JablotronError):
    """
    Submitting a user code failed.

    Attributes:
        reason: CommandFailure describing what went wrong
        result_code: Business result reported by the panel, when the wire format
            separates it from the request status
    """

    def __init__(
        self,
        reason: CommandFailure,
        message: str,
        status: Optional[int] = None,
        result_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, status)
        self.reason = reason
        self.result_code = result_code
