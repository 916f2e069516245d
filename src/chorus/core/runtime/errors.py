from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

import httpx


@dataclass(slots=True, frozen=True)
class RateLimitSignal:
    remaining: int
    reset_at: datetime


class ChorusError(Exception):
    pass


class InvalidRequestError(ChorusError, ValueError):
    """Raised synchronously for requests that can never succeed."""


class ProviderError(ChorusError):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        transient: bool = True,
        status_code: int | None = None,
        rate_limit: RateLimitSignal | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.transient = transient
        self.status_code = status_code
        self.rate_limit = rate_limit


class MalformedResponseError(ProviderError):
    def __init__(self, message: str, *, provider: str, status_code: int | None = None) -> None:
        super().__init__(message, provider=provider, transient=False, status_code=status_code)


class RateLimitedError(ProviderError):
    def __init__(self, message: str, *, provider: str, rate_limit: RateLimitSignal | None = None) -> None:
        super().__init__(message, provider=provider, transient=True, status_code=429, rate_limit=rate_limit)


class ProviderTimeoutError(ProviderError):
    def __init__(self, message: str, *, provider: str) -> None:
        super().__init__(message, provider=provider, transient=True)


@dataclass(slots=True)
class ErrorInfo:
    provider: str
    error_kind: str
    error_type: str
    message_signature: str
    retryable: bool
    http_status: int | None = None


def _normalize_message(message: str, max_len: int = 180) -> str:
    msg = message.lower()
    msg = re.sub(r"\s+", " ", msg)
    msg = re.sub(r"\d+", "#", msg)
    return msg.strip()[:max_len]


def _compact_message(message: str, max_len: int = 220) -> str:
    msg = message.lower()
    msg = re.sub(r"\s+", " ", msg)
    return msg.strip()[:max_len]


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in {408, 429}


def classify_error(exc: BaseException, *, provider: str) -> ErrorInfo:
    status: int | None = None
    if isinstance(exc, MalformedResponseError):
        kind, retryable, status = "malformed", False, exc.status_code
    elif isinstance(exc, RateLimitedError):
        kind, retryable, status = "rate_limited", True, 429
    elif isinstance(exc, (ProviderTimeoutError, httpx.TimeoutException, TimeoutError)):
        kind, retryable = "timeout", True
    elif isinstance(exc, ProviderError):
        status = exc.status_code
        kind = "http_status" if status is not None else "transport"
        retryable = exc.transient
    elif isinstance(exc, httpx.TransportError):
        kind, retryable = "transport", True
    elif isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        kind, retryable = "http_status", is_transient_status(status)
    else:
        kind, retryable = "unexpected", False

    return ErrorInfo(
        provider=provider,
        error_kind=kind,
        error_type=exc.__class__.__name__,
        message_signature=_normalize_message(str(exc)),
        retryable=retryable,
        http_status=status,
    )


def compact_error_summary(exc: BaseException, max_len: int = 220) -> str:
    return f"{exc.__class__.__name__}: {_compact_message(str(exc), max_len=max_len)}"
