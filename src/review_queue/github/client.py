"""Authenticated GitHub API client composed with the retry executor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from .auth import TokenProvider
from .errors import ClientError, RateLimitError, TransportError, UpstreamError
from .http import (
    API_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    GH_HEADERS_BASE,
    HttpResponse,
    HttpSession,
    error_for_response,
    is_rate_limited,
    warn_on_low_budget,
)
from .retry import RetryExecutor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponse:
    """Decoded response; `payload` is None for `304 Not Modified`."""

    status_code: int
    headers: Mapping[str, str]
    payload: Any

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304

    @property
    def etag(self) -> str | None:
        return self.headers.get("ETag") or self.headers.get("etag")


class GitHubClient:
    """Wraps an HTTP session with auth injection, auth-refresh, and retries.

    Every call runs inside the retry executor. Within one attempt a 401/403
    that is not a rate limit invalidates the installation token and is sent
    once more with a freshly minted token; a second rejection raises
    `AuthorizationError`, which is never retried.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        session: HttpSession | None = None,
        executor: RetryExecutor | None = None,
        base_url: str = API_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._token_provider = token_provider
        self._session = session or requests.Session()
        self._executor = executor or RetryExecutor()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        allow_not_modified: bool = False,
    ) -> ApiResponse:
        """GET a REST resource and decode its JSON body."""
        return self._executor.run(
            lambda: self._send_authenticated(
                "GET",
                path,
                params=params,
                headers=headers,
                allow_not_modified=allow_not_modified,
            ),
            description=f"GET {path}",
        )

    def graphql(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        """Run a read-only GraphQL query and return its `data` object."""
        return self._executor.run(lambda: self._graphql_once(query, variables), description="POST /graphql")

    def _graphql_once(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        response = self._send_authenticated("POST", "/graphql", json_body={"query": query, "variables": variables})
        payload = response.payload
        if not isinstance(payload, dict):
            raise UpstreamError("GraphQL response is not a JSON object.", status_code=response.status_code)
        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors if isinstance(error, dict))
            if any(isinstance(error, dict) and error.get("type") == "RATE_LIMITED" for error in errors):
                raise RateLimitError(f"GraphQL rate limited: {messages}", status_code=response.status_code)
            raise ClientError(f"GraphQL query failed: {messages or errors}", status_code=response.status_code)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamError("GraphQL response has no data object.", status_code=response.status_code)
        return data

    def _send_authenticated(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        allow_not_modified: bool = False,
    ) -> ApiResponse:
        response = self._send_once(method, path, params=params, json_body=json_body, headers=headers)
        if response.status_code in (401, 403) and not is_rate_limited(response):
            LOGGER.warning(
                "%s %s rejected with HTTP %d; refreshing installation token.", method, path, response.status_code
            )
            self._token_provider.invalidate()
            response = self._send_once(method, path, params=params, json_body=json_body, headers=headers)
        return self._decode(response, f"{method} {path}", allow_not_modified)

    def _send_once(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None,
        json_body: Any,
        headers: Mapping[str, str] | None,
    ) -> HttpResponse:
        token = self._token_provider.get_token()
        request_headers = {**GH_HEADERS_BASE, **(headers or {}), "Authorization": f"Bearer {token}"}
        try:
            return self._session.request(
                method,
                f"{self._base_url}{path}",
                params=dict(params) if params is not None else None,
                json=json_body,
                headers=request_headers,
                timeout=self._timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

    def _decode(self, response: HttpResponse, context: str, allow_not_modified: bool) -> ApiResponse:
        if response.status_code == 304 and allow_not_modified:
            return ApiResponse(status_code=304, headers=response.headers, payload=None)
        if not 200 <= response.status_code < 300:
            raise error_for_response(response, context)
        warn_on_low_budget(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(f"{context} returned a non-JSON body.", status_code=response.status_code) from exc
        return ApiResponse(status_code=response.status_code, headers=response.headers, payload=payload)
