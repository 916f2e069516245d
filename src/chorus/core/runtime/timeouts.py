from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from chorus.core.runtime.errors import ProviderTimeoutError

T = TypeVar("T")


async def run_with_timeout(awaitable: Awaitable[T], timeout_seconds: float, *, provider: str) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ProviderTimeoutError(f"{provider} timed out after {timeout_seconds}s", provider=provider) from exc
