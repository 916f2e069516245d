from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from chorus.core.providers.base import ProviderAdapter
from chorus.core.providers.ratelimits import signal_from_retry_after
from chorus.core.runtime.errors import (
    MalformedResponseError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    RateLimitSignal,
    is_transient_status,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def api_key_from_env(api_key_env: str | None) -> str | None:
    value = os.getenv(api_key_env or "", "").strip()
    return value or None


class HttpProviderAdapter(ProviderAdapter):
    """Shared JSON-over-HTTP plumbing for the vendor adapters."""

    name = "http"
    default_base_url = ""
    default_model = ""

    def __init__(
        self,
        *,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.api_key = api_key
        self.model = (model or "").strip() or self.default_model
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, transport=self._transport)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _params(self) -> dict[str, str]:
        return {}

    def rate_limit_from_headers(self, headers: httpx.Headers) -> RateLimitSignal | None:
        return None

    @retry(stop=stop_after_attempt(2), wait=wait_fixed(0.2), retry=retry_if_exception_type(httpx.TransportError), reraise=True)
    async def _send(self, method: str, path: str, *, json: dict[str, Any] | None, timeout_seconds: float) -> httpx.Response:
        return await self._get_client().request(
            method,
            path,
            json=json,
            headers=self._headers(),
            params=self._params(),
            timeout=timeout_seconds,
        )

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None,
        timeout_seconds: float,
    ) -> tuple[dict[str, Any], RateLimitSignal | None]:
        try:
            resp = await self._send(method, path, json=payload, timeout_seconds=timeout_seconds)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.name} request timed out: {exc}", provider=self.name) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"{self.name} transport error: {exc}", provider=self.name) from exc

        signal = self.rate_limit_from_headers(resp.headers)
        if resp.status_code == 429:
            raise RateLimitedError(
                f"{self.name} rate limited",
                provider=self.name,
                rate_limit=signal or signal_from_retry_after(resp.headers, now=self._clock()),
            )
        if resp.status_code >= 400:
            raise ProviderError(
                f"{self.name} http {resp.status_code}: {resp.text[:200]}",
                provider=self.name,
                transient=is_transient_status(resp.status_code),
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{self.name} returned a non-JSON body", provider=self.name, status_code=resp.status_code
            ) from exc
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"{self.name} returned {type(body).__name__} instead of an object",
                provider=self.name,
                status_code=resp.status_code,
            )
        return body, signal

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
