"""Shared HTTP transport for platform remote clients."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PlatformClientError(Exception):
    """Base exception for platform client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class PlatformAuthError(PlatformClientError):
    """Authentication error (401/403)."""


class PlatformResourceNotFoundError(PlatformClientError):
    """Resource not found (404)."""


class PlatformRateLimitError(PlatformClientError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class PlatformTransientError(PlatformClientError):
    """Retryable platform error (5xx, timeouts, network issues)."""


class PlatformHttpClient:
    """
    Thin JSON-over-HTTP client with retry.

    Subclasses provide the base URL, auth headers and the platform API methods.
    Retries cover rate limits, 5xx responses and connection failures; auth
    errors and other 4xx responses are raised immediately.
    """

    DEFAULT_TIMEOUT = 15.0
    DEFAULT_RETRIES = 2
    DEFAULT_RETRY_DELAY = 0.5
    USER_AGENT = "OmniInbox/1.0"

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._client: httpx.Client | None = None

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _auth_params(self) -> dict[str, str]:
        return {}

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": self.USER_AGENT,
                    **self._auth_headers(),
                },
            )
        return self._client

    def close(self):
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def _handle_response(self, response: httpx.Response) -> dict | list | None:
        if response.status_code == 204:
            return None

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.status_code in (401, 403):
            raise PlatformAuthError(
                f"Authentication failed: {response.status_code}",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code == 404:
            raise PlatformResourceNotFoundError("Resource not found", status_code=404, response=data)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise PlatformRateLimitError(
                "Rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if response.status_code >= 500:
            raise PlatformTransientError(
                f"Platform unavailable ({response.status_code})",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code >= 400:
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict):
                    error_msg = error.get("message") or str(error)
                else:
                    error_msg = data.get("message") or data.get("detail") or error or str(data)
            else:
                error_msg = str(data)
            logger.warning("platform_api_error status=%s body=%s", response.status_code, data)
            raise PlatformClientError(
                f"API error ({response.status_code}): {error_msg}",
                status_code=response.status_code,
                response=data,
            )

        return data

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json_data: dict | list | None = None,
    ) -> Any:
        client = self._get_client()
        query = {**self._auth_params(), **(params or {})}

        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = client.request(
                    method=method,
                    url=path,
                    params=query or None,
                    json=json_data,
                )
                return self._handle_response(response)

            except PlatformRateLimitError as e:
                last_error = e
                if attempt >= self.retries:
                    raise
                wait_time = e.retry_after or (self.retry_delay * (2**attempt))
                logger.warning("platform_rate_limited wait=%ss path=%s", wait_time, path)
                time.sleep(wait_time)

            except PlatformTransientError as e:
                last_error = e
                if attempt >= self.retries:
                    raise
                time.sleep(self.retry_delay * (2**attempt))

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_error = e
                if attempt >= self.retries:
                    raise PlatformTransientError(f"Connection error after {self.retries} retries: {e}") from e
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("platform_request_retry wait=%ss path=%s error=%s", wait_time, path, e)
                time.sleep(wait_time)

        raise PlatformClientError(f"Request failed after {self.retries} retries: {last_error}")
