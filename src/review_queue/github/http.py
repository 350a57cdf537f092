"""Shared HTTP constants and response classification for GitHub API calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from .errors import AuthorizationError, ClientError, RateLimitError, ServerError, UpstreamError

LOGGER = logging.getLogger(__name__)

API_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
RATE_LIMIT_LOW_WATERMARK = 10

GH_HEADERS_BASE: dict[str, str] = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
    "User-Agent": "review-queue-monitor",
}


class HttpResponse(Protocol):
    """The subset of `requests.Response` the client relies on."""

    status_code: int
    headers: Mapping[str, str]
    text: str

    def json(self) -> Any: ...


class HttpSession(Protocol):
    """The subset of `requests.Session` the client relies on."""

    def request(self, method: str, url: str, **kwargs: Any) -> HttpResponse: ...


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit budget parsed from `X-RateLimit-*` headers."""

    limit: int
    remaining: int
    reset_timestamp: int

    @property
    def seconds_until_reset(self) -> int:
        return max(0, self.reset_timestamp - int(time.time()))


def parse_rate_limit_headers(headers: Mapping[str, str]) -> RateLimitInfo | None:
    """Return rate limit info when the headers carry it."""
    try:
        limit = int(headers.get("X-RateLimit-Limit", 0))
        remaining = int(headers.get("X-RateLimit-Remaining", 0))
        reset_timestamp = int(headers.get("X-RateLimit-Reset", 0))
    except (TypeError, ValueError):
        LOGGER.debug("Could not parse rate limit headers.")
        return None
    if limit == 0 and reset_timestamp == 0:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset_timestamp=reset_timestamp)


def warn_on_low_budget(response: HttpResponse) -> None:
    info = parse_rate_limit_headers(response.headers)
    if info is not None and info.remaining <= RATE_LIMIT_LOW_WATERMARK:
        LOGGER.warning(
            "Approaching GitHub API rate limit: %d requests remaining, resets in %ds.",
            info.remaining,
            info.seconds_until_reset,
        )


def is_rate_limited(response: HttpResponse) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    info = parse_rate_limit_headers(response.headers)
    if info is not None and info.remaining == 0:
        return True
    return "rate limit" in (response.text or "").lower()


def error_for_response(response: HttpResponse, context: str) -> UpstreamError:
    """Map a non-success response onto the upstream error taxonomy."""
    status = response.status_code
    detail = _short_body(response)
    message = f"{context} failed: HTTP {status} {detail}".rstrip()
    if is_rate_limited(response):
        return RateLimitError(message, status_code=status, retry_after=_retry_after_seconds(response))
    if status >= 500:
        return ServerError(message, status_code=status)
    if status in (401, 403):
        return AuthorizationError(message, status_code=status)
    if 400 <= status < 500:
        return ClientError(message, status_code=status)
    return UpstreamError(message, status_code=status)


def _retry_after_seconds(response: HttpResponse) -> float | None:
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            LOGGER.debug("Ignoring unparsable Retry-After header: %s", retry_after)
    info = parse_rate_limit_headers(response.headers)
    if info is not None and info.reset_timestamp > 0:
        return float(info.seconds_until_reset)
    return None


def _short_body(response: HttpResponse, limit: int = 200) -> str:
    text = (response.text or "").strip()
    return text if len(text) <= limit else f"{text[:limit]}..."
