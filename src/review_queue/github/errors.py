"""Exceptions raised at the GitHub API boundary and their retry classification."""

from __future__ import annotations

import requests

from ..errors import ReviewQueueError


class UpstreamError(ReviewQueueError):
    """Raised when the GitHub API returns an unusable response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(UpstreamError):
    """Raised when the primary or secondary rate limit is exhausted."""

    def __init__(self, message: str, *, status_code: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class ServerError(UpstreamError):
    """Raised for 5xx responses."""


class AuthorizationError(UpstreamError):
    """Raised for 401/403 responses that persist after a token refresh."""


class ClientError(UpstreamError):
    """Raised for 4xx responses other than rate limiting and authorization."""


class TransportError(UpstreamError):
    """Raised when the request never produced a response (connection reset, timeout)."""


RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    RateLimitError,
    ServerError,
    TransportError,
    requests.ConnectionError,
    requests.Timeout,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True for rate limits, 5xx responses, and network failures."""
    return isinstance(exc, RETRYABLE_ERRORS)
