"""Shared error taxonomy for upstream insights sources.

Every source adapter maps platform-specific failures into one of these
exceptions, so the orchestrator never inspects upstream error shapes.
"""
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds reported per source."""

    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    NO_BUSINESS_ACCOUNT = "no_business_account"
    TOKEN_EXPIRED = "token_expired"


DEFAULT_RETRY_AFTER_SECONDS = 60


class SourceFetchError(Exception):
    """Base exception for all classified upstream failures."""

    kind: ErrorKind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        retryable: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.status = status
        self.retryable = retryable
        self.details = dict(details or {})
        super().__init__(message)


class RateLimitError(SourceFetchError):
    """Raised when the upstream quota is exceeded (HTTP 429)."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        reset_time: Optional[int] = None,
        status: Optional[int] = 429,
        details: Optional[dict[str, Any]] = None,
    ):
        self.retry_after_supplied = retry_after is not None
        self.retry_after = (
            float(retry_after)
            if retry_after is not None
            else float(DEFAULT_RETRY_AFTER_SECONDS)
        )
        self.reset_time = reset_time

        merged = dict(details or {})
        merged["retryAfter"] = self.retry_after
        if reset_time:
            merged["resetTime"] = reset_time

        super().__init__(message, status=status, retryable=True, details=merged)


class AuthError(SourceFetchError):
    """Raised for rejected credentials (HTTP 401/403)."""

    kind = ErrorKind.AUTH_ERROR


class ApiError(SourceFetchError):
    """Raised for any other non-success upstream response."""

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        retryable = status is not None and status >= 500
        super().__init__(message, status=status, retryable=retryable, details=details)


class NetworkError(SourceFetchError):
    """Raised for transport failures (timeout, connection reset, DNS)."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, status=None, retryable=True, details=details)


class NoBusinessAccountError(SourceFetchError):
    """Raised when a platform requires a linked business profile that is missing."""

    kind = ErrorKind.NO_BUSINESS_ACCOUNT

    def __init__(
        self,
        message: str,
        *,
        remediation: str,
        help_url: Optional[str] = None,
    ):
        details: dict[str, Any] = {"message": remediation}
        if help_url:
            details["helpUrl"] = help_url
        super().__init__(message, status=None, retryable=False, details=details)


class TokenExpiredError(SourceFetchError):
    """Raised when a credential is expired and could not be refreshed."""

    kind = ErrorKind.TOKEN_EXPIRED


class PlatformNotConnectedError(Exception):
    """Raised when a single-platform report targets a platform the account lacks."""

    def __init__(self, account_id: str, platform: str):
        self.account_id = account_id
        self.platform = platform
        super().__init__(f"{platform} account not connected for account={account_id}")


class CacheUnavailableError(Exception):
    """Raised by a cache backend that cannot be reached (e.g. Redis down)."""
