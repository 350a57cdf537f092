"""GitHub App installation token provider with single-flight refresh."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import jwt
import requests

from ..config import QueueConfig
from ..errors import ConfigurationError
from .errors import TransportError, UpstreamError
from .http import API_BASE_URL, DEFAULT_TIMEOUT_SECONDS, GH_HEADERS_BASE, HttpSession, error_for_response

LOGGER = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER_SECONDS = 60
JWT_MAX_LIFETIME_SECONDS = 9 * 60
JWT_CLOCK_SKEW_SECONDS = 60


@dataclass(frozen=True)
class TokenCache:
    """Installation token held in process memory only."""

    value: str
    expires_at_epoch_seconds: int


class TokenProvider:
    """Mints and caches the installation token used for upstream calls.

    One instance is owned by the composition root and injected into the
    client. Concurrent callers that find the cache expired share a single
    in-flight refresh future, so at most one exchange request is in flight.
    """

    def __init__(
        self,
        config: QueueConfig,
        session: HttpSession | None = None,
        clock: Callable[[], float] = time.time,
        refresh_buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._clock = clock
        self._refresh_buffer_seconds = refresh_buffer_seconds
        self._lock = threading.Lock()
        self._cached: TokenCache | None = None
        self._refresh_future: Future[TokenCache] | None = None

    def get_token(self) -> str:
        """Return a valid installation token, refreshing it when near expiry."""
        with self._lock:
            cached = self._cached
            if cached is not None and self._is_fresh(cached):
                return cached.value
            future = self._refresh_future
            owns_refresh = future is None
            if future is None:
                future = Future()
                self._refresh_future = future

        if not owns_refresh:
            return future.result().value

        try:
            token = self._request_installation_token()
        except BaseException as exc:
            with self._lock:
                self._refresh_future = None
            future.set_exception(exc)
            raise

        with self._lock:
            self._cached = token
            self._refresh_future = None
        future.set_result(token)
        return token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call mints a fresh one.

        A refresh already in flight is left alone; later callers join it.
        """
        with self._lock:
            self._cached = None
        LOGGER.info("Installation token invalidated.")

    def create_app_jwt(self) -> str:
        """Sign a short-lived RS256 assertion identifying the GitHub App."""
        app_id = self._config.app_id
        if not app_id:
            raise ConfigurationError("Missing GITHUB_APP_ID configuration.")
        private_key = self._config.private_key_pem
        if not private_key or "PRIVATE KEY" not in private_key:
            raise ConfigurationError("Missing or malformed GitHub App private key (PEM expected).")

        now = int(self._clock())
        payload = {
            "iat": now - JWT_CLOCK_SKEW_SECONDS,
            "exp": now + JWT_MAX_LIFETIME_SECONDS,
            "iss": app_id,
        }
        try:
            return jwt.encode(payload, private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise ConfigurationError(f"Unable to sign GitHub App JWT: {exc}") from exc

    def _is_fresh(self, token: TokenCache) -> bool:
        return token.expires_at_epoch_seconds - self._refresh_buffer_seconds > self._clock()

    def _request_installation_token(self) -> TokenCache:
        installation_id = self._config.installation_id
        if not installation_id:
            raise ConfigurationError("Missing GITHUB_INSTALLATION_ID configuration.")

        app_jwt = self.create_app_jwt()
        url = f"{API_BASE_URL}/app/installations/{installation_id}/access_tokens"
        LOGGER.debug("Requesting installation token for installation %s.", installation_id)
        try:
            response = self._session.request(
                "POST",
                url,
                headers={**GH_HEADERS_BASE, "Authorization": f"Bearer {app_jwt}"},
                timeout=DEFAULT_TIMEOUT_SECONDS,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransportError(f"Installation token request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise error_for_response(response, "Installation token request")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("Installation token response is not JSON.", status_code=response.status_code) from exc

        token = payload.get("token") if isinstance(payload, dict) else None
        expires_at = payload.get("expires_at") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not isinstance(expires_at, str):
            raise UpstreamError("Installation token response missing token or expires_at fields.")
        try:
            expires_epoch = int(datetime.fromisoformat(expires_at).timestamp())
        except ValueError as exc:
            raise UpstreamError(f"Unable to parse installation token expiry: {expires_at}") from exc

        LOGGER.info("Minted installation token expiring at %s.", expires_at)
        return TokenCache(value=token, expires_at_epoch_seconds=expires_epoch)
