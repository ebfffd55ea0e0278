"""
Error taxonomy for page navigation and user actions.

Retryable-transient failures are retried with backoff, everything deriving
from FatalError is surfaced immediately.
"""
import re
from enum import Enum
from typing import List, Optional


class CrmAutomationError(Exception):
    """Base class for every error raised by the suite's helpers."""


class RetryableNavigationError(CrmAutomationError):
    """Transient failure: empty/partial render, overload, dropped connection."""


class FatalError(CrmAutomationError):
    """Failure that must not be retried."""


class AuthenticationError(FatalError):
    """Credentials rejected or the session was bounced back to the login page."""

    def __init__(self, message: str, current_url: str = ""):
        super().__init__(message)
        self.current_url = current_url


class PermissionDeniedError(FatalError):
    """An expected control is present but disabled for this account."""

    def __init__(self, message: str, disabled: Optional[List[str]] = None):
        super().__init__(message)
        self.disabled = list(disabled or [])


class RetriesExhaustedError(FatalError):
    def __init__(self, message: str, attempts: int, elapsed: float, last_error: Optional[BaseException] = None, history=None):
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error
        self.history = list(history or [])


class ActionTimeoutError(FatalError):
    """Neither the success nor the failure outcome of an action appeared in time."""

    def __init__(self, message: str, current_url: str = ""):
        super().__init__(f"{message} Current URL: {current_url}")
        self.current_url = current_url


class ReadinessTimeoutError(CrmAutomationError):
    def __init__(self, message: str, missing: Optional[List[str]] = None, blocking: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])
        self.blocking = list(blocking or [])


class NotificationNotFoundError(CrmAutomationError):
    pass


class SelectorNotFoundError(CrmAutomationError):
    def __init__(self, message: str, tried: Optional[List[str]] = None):
        super().__init__(message)
        self.tried = list(tried or [])


class ErrorClass(Enum):
    CONNECTION = "connection"
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self in (ErrorClass.CONNECTION, ErrorClass.TRANSIENT)


_CONNECTION_RE = re.compile(
    r"ERR_CONNECTION_REFUSED|ERR_CONNECTION_RESET|ERR_CONNECTION_CLOSED|ERR_CONNECTION_TIMED_OUT"
    r"|ERR_NETWORK_CHANGED|ERR_INTERNET_DISCONNECTED|ERR_NAME_NOT_RESOLVED|ERR_ADDRESS_UNREACHABLE"
    r"|ECONNREFUSED|ECONNRESET|connection refused",
    re.IGNORECASE,
)
# Bare 401/403 are ignored; they also turn up in selectors and record ids
_AUTHENTICATION_RE = re.compile(
    r"(?:HTTP(?:/[\d.]+)?|status(?: code)?)\s*:?\s*401\b|unauthori[sz]ed|invalid credentials|session expired",
    re.IGNORECASE,
)
_PERMISSION_RE = re.compile(
    r"(?:HTTP(?:/[\d.]+)?|status(?: code)?)\s*:?\s*403\b|forbidden|permission denied|access denied",
    re.IGNORECASE,
)

_PROGRAMMING_ERRORS = (TypeError, AttributeError, NameError, ImportError, KeyError)


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception raised by a navigation/action attempt onto an ErrorClass."""
    if isinstance(exc, AuthenticationError):
        return ErrorClass.AUTHENTICATION
    if isinstance(exc, PermissionDeniedError):
        return ErrorClass.PERMISSION
    if isinstance(exc, FatalError):
        return ErrorClass.FATAL
    if isinstance(exc, _PROGRAMMING_ERRORS):
        return ErrorClass.FATAL

    text = str(exc)
    if _CONNECTION_RE.search(text) or isinstance(exc, ConnectionError):
        return ErrorClass.CONNECTION
    if _AUTHENTICATION_RE.search(text):
        return ErrorClass.AUTHENTICATION
    if _PERMISSION_RE.search(text):
        return ErrorClass.PERMISSION
    # Timeouts, partial renders and anything unrecognised get another attempt
    return ErrorClass.TRANSIENT
