"""
Error taxonomy for the billing core.

Every failure surfaced to a caller is one of a small closed set of kinds,
so callers never need to know upstream-specific error vocabularies.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Closed set of error kinds surfaced to callers."""
    BAD_INPUT = "BAD_INPUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL = "INTERNAL"

    @property
    def http_status(self) -> int:
        """HTTP status code used when this kind reaches the API surface."""
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.BAD_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


class BillingError(Exception):
    """Base error carrying a taxonomy kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after_seconds = retry_after_seconds


class InsufficientFundsError(BillingError):
    """Raised when a wallet cannot cover a settled debit."""

    def __init__(self, message: str = "Insufficient wallet balance"):
        super().__init__(ErrorKind.INSUFFICIENT_FUNDS, message)


class CircuitOpenError(BillingError):
    """Raised without calling the dependency while its breaker is open."""

    def __init__(self, dependency: str):
        super().__init__(
            ErrorKind.SERVICE_UNAVAILABLE,
            f"{dependency} circuit breaker is open",
        )
        self.dependency = dependency


class ProviderError(BillingError):
    """Upstream failure normalized into the taxonomy."""

    def __init__(self, kind: ErrorKind, message: str, provider: str, status: Optional[int] = None):
        super().__init__(kind, message)
        self.provider = provider
        self.status = status


def map_http_status(provider: str, status: int, message: Optional[str] = None) -> ProviderError:
    """Map an upstream HTTP status to a ProviderError.

    Args:
        provider: Upstream name used in the default message
        status: HTTP status returned by the upstream
        message: Upstream error message, if one could be extracted

    Returns:
        ProviderError with the normalized kind
    """
    error_message = message or f"{provider}: HTTP {status}"
    if status in (400, 409, 422):
        kind = ErrorKind.BAD_INPUT
    elif status in (401, 403):
        kind = ErrorKind.UNAUTHORIZED
    elif status == 404:
        kind = ErrorKind.NOT_FOUND
    elif status == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status >= 500:
        kind = ErrorKind.SERVICE_UNAVAILABLE
    else:
        kind = ErrorKind.INTERNAL
    return ProviderError(kind, error_message, provider=provider, status=status)
