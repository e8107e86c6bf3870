"""
API Client
==========

Outbound JSON client for the collaborator API layer.

Features:
- Bearer token taken from the current session on every request
- ``X-Request-Time`` header for latency measurement
- 4xx fails immediately; 5xx and network errors retry with linear backoff
- Successful GET responses cached (TTL, bounded, oldest-inserted evicted)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from masterguard.core.api.cache import ResponseCache
from masterguard.core.errors import MasterGuardError
from masterguard.security.constants import (
    API_RETRY_ATTEMPTS,
    API_RETRY_DELAY_SECONDS,
    API_TIMEOUT_SECONDS,
)


TokenProvider = Callable[[], Optional[str]]

_MISS = object()


class APIClientError(MasterGuardError):
    """
    Raised for non-2xx responses and exhausted network retries.

    ``upstream_status`` is None when no response was received.
    """

    code = "api_error"
    public_message = "Upstream service request failed"
    status = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body
        if upstream_status is not None:
            self.status = upstream_status

    @property
    def retryable(self) -> bool:
        return self.upstream_status is None or self.upstream_status >= 500


class ApiClient:
    """
    JSON API client built on ``requests.Session``.

    Usage:
        client = ApiClient(
            "https://backend.example.ch/api",
            token_provider=lambda: current_token,
        )
        orders = client.get("/orders", params={"status": "open"})
        client.post("/orders", json={"item": "espresso"})
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        cache: Optional[ResponseCache] = None,
        retry_attempts: int = API_RETRY_ATTEMPTS,
        retry_delay_seconds: float = API_RETRY_DELAY_SECONDS,
        timeout_seconds: float = API_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._cache = cache if cache is not None else ResponseCache()
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay_seconds
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._sleep = sleep
        self._log = logging.getLogger("masterguard.api")

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Request-Time": str(int(time.time() * 1000)),
        }
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _decode(method: str, path: str, response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise APIClientError(
                f"{method} {path} returned a non-JSON body: {e}", body=response.text,
            ) from e

    @staticmethod
    def _cache_key(path: str, params: Optional[dict[str, Any]]) -> tuple:
        return (path, tuple(sorted((params or {}).items())))

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            APIClientError: On a non-2xx response or when retries run out
        """
        method = method.upper()
        cacheable = method == "GET"

        if cacheable:
            cached = self._cache.get(self._cache_key(path, params), _MISS)
            if cached is not _MISS:
                self._log.debug("Cache hit: GET %s", path)
                return cached

        url = f"{self._base_url}/{path.lstrip('/')}"
        last_error: Optional[APIClientError] = None

        for attempt in range(1, self._retry_attempts + 1):
            started = time.monotonic()
            try:
                response = self._session.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
            except requests.RequestException as e:
                last_error = APIClientError(f"{method} {path} failed: {e}")
            else:
                elapsed_ms = (time.monotonic() - started) * 1000
                self._log.debug(
                    "%s %s -> %d in %.1f ms", method, path, response.status_code, elapsed_ms,
                )
                if response.status_code < 400:
                    data = self._decode(method, path, response)
                    if cacheable:
                        self._cache.set(self._cache_key(path, params), data)
                    return data

                last_error = APIClientError(
                    f"{method} {path} returned {response.status_code}",
                    upstream_status=response.status_code,
                    body=response.text,
                )

            if not last_error.retryable:
                raise last_error

            if attempt < self._retry_attempts:
                self._log.warning(
                    "%s (attempt %d/%d), retrying", last_error, attempt, self._retry_attempts,
                )
                self._sleep(self._retry_delay * attempt)

        raise last_error

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._session.close()
