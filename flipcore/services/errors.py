"""Error taxonomy for external collaborators.

Domain failures (blocked identity, missing comps, unprofitable flips) are
values, not exceptions. Exceptions only exist at the collaborator
boundary, where httpx errors and status codes are classified into a
ServiceError that the retry policy and the adapters understand.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Transport errors that are always worth another attempt
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
)


class ErrorCode(str, Enum):
    """Collaborator failure codes."""

    EBAY_RATE_LIMIT = "EBAY_RATE_LIMIT"
    EBAY_TIMEOUT = "EBAY_TIMEOUT"
    EBAY_API_ERROR = "EBAY_API_ERROR"
    OPENAI_RATE_LIMIT = "OPENAI_RATE_LIMIT"
    OPENAI_TIMEOUT = "OPENAI_TIMEOUT"
    OPENAI_API_ERROR = "OPENAI_API_ERROR"
    SERPAPI_ERROR = "SERPAPI_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES = frozenset({
    ErrorCode.EBAY_RATE_LIMIT,
    ErrorCode.EBAY_TIMEOUT,
    ErrorCode.EBAY_API_ERROR,
    ErrorCode.OPENAI_RATE_LIMIT,
    ErrorCode.OPENAI_TIMEOUT,
    ErrorCode.OPENAI_API_ERROR,
    ErrorCode.SERPAPI_ERROR,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT,
    ErrorCode.RATE_LIMITED,
})

# Service-specific codes for the generic rate limit / timeout / server error cases
_SERVICE_CODES: dict[str, dict[str, ErrorCode]] = {
    "ebay": {
        "rate_limit": ErrorCode.EBAY_RATE_LIMIT,
        "timeout": ErrorCode.EBAY_TIMEOUT,
        "server": ErrorCode.EBAY_API_ERROR,
    },
    "openai": {
        "rate_limit": ErrorCode.OPENAI_RATE_LIMIT,
        "timeout": ErrorCode.OPENAI_TIMEOUT,
        "server": ErrorCode.OPENAI_API_ERROR,
    },
    "serpapi": {
        "rate_limit": ErrorCode.SERPAPI_ERROR,
        "timeout": ErrorCode.SERPAPI_ERROR,
        "server": ErrorCode.SERPAPI_ERROR,
    },
}

_GENERIC_CODES = {
    "rate_limit": ErrorCode.RATE_LIMITED,
    "timeout": ErrorCode.TIMEOUT,
    "server": ErrorCode.NETWORK_ERROR,
}

USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.EBAY_RATE_LIMIT: "Marketplace search is temporarily busy. Try again in a few minutes.",
    ErrorCode.EBAY_TIMEOUT: "Marketplace search is slow right now. Try again shortly.",
    ErrorCode.EBAY_API_ERROR: "Marketplace search is temporarily unavailable.",
    ErrorCode.OPENAI_RATE_LIMIT: "Identification service is busy. Try again in a minute.",
    ErrorCode.OPENAI_TIMEOUT: "Identification is taking longer than usual. Manual verification recommended.",
    ErrorCode.OPENAI_API_ERROR: "Identification service is temporarily unavailable.",
    ErrorCode.SERPAPI_ERROR: "Comparison search failed. Refresh in a minute for the latest data.",
    ErrorCode.NETWORK_ERROR: "Network problem reaching a pricing service.",
    ErrorCode.TIMEOUT: "A pricing service timed out.",
    ErrorCode.VALIDATION_ERROR: "The request was rejected as invalid.",
    ErrorCode.AUTH_FAILED: "A pricing service rejected our credentials.",
    ErrorCode.NOT_FOUND: "No results found.",
    ErrorCode.RATE_LIMITED: "Too many requests. Try again later.",
    ErrorCode.QUOTA_EXCEEDED: "Daily lookup limit reached. Try again tomorrow.",
    ErrorCode.NOT_CONFIGURED: "This service is not configured.",
    ErrorCode.UNKNOWN: "Something went wrong. Try again in a moment.",
}


class ServiceError(Exception):
    """A classified collaborator failure."""

    def __init__(
        self,
        code: ErrorCode,
        service: str,
        message: str = "",
        retryable: bool = False,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message or code.value)
        self.code = code
        self.service = service
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after  # Seconds, when the service says so
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.service}: {self.code.value}" + (f" ({self.message})" if self.message else "")

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.code, USER_MESSAGES[ErrorCode.UNKNOWN])


def _code_for(service: str, kind: str) -> ErrorCode:
    return _SERVICE_CODES.get(service.lower(), _GENERIC_CODES).get(kind, _GENERIC_CODES[kind])


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def classify_status(status_code: int, service: str, response: Optional[httpx.Response] = None) -> ServiceError:
    """Classify an HTTP error status into a ServiceError."""
    if status_code == 429:
        return ServiceError(
            code=_code_for(service, "rate_limit"),
            service=service,
            message="rate limited (429)",
            retryable=True,
            retry_after=_parse_retry_after(response) if response is not None else None,
            status_code=status_code,
        )
    if status_code in (401, 403):
        return ServiceError(ErrorCode.AUTH_FAILED, service, f"HTTP {status_code}", status_code=status_code)
    if status_code == 404:
        return ServiceError(ErrorCode.NOT_FOUND, service, "HTTP 404", status_code=status_code)
    if status_code in (408, 504):
        return ServiceError(_code_for(service, "timeout"), service, f"HTTP {status_code}", True, status_code=status_code)
    if 500 <= status_code < 600:
        return ServiceError(_code_for(service, "server"), service, f"HTTP {status_code}", True, status_code=status_code)
    return ServiceError(ErrorCode.VALIDATION_ERROR, service, f"HTTP {status_code}", status_code=status_code)


def classify_exception(exc: BaseException, service: str) -> ServiceError:
    """
    Map any exception raised by a collaborator onto a ServiceError.

    Args:
        exc: Exception raised by the collaborator call
        service: Service name ("ebay", "openai", "serpapi", "psa"...)

    Returns:
        ServiceError with code and retryability set
    """
    if isinstance(exc, ServiceError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, service, exc.response)

    if isinstance(exc, httpx.TimeoutException):
        return ServiceError(_code_for(service, "timeout"), service, type(exc).__name__, retryable=True)

    if isinstance(exc, RETRYABLE_EXC) or isinstance(exc, httpx.TransportError):
        return ServiceError(ErrorCode.NETWORK_ERROR, service, type(exc).__name__, retryable=True)

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ServiceError(_code_for(service, "timeout"), service, "timed out", retryable=True)

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ServiceError(ErrorCode.VALIDATION_ERROR, service, str(exc))

    logger.debug(f"Unclassified {service} error: {type(exc).__name__}: {exc}")
    return ServiceError(ErrorCode.UNKNOWN, service, str(exc))
