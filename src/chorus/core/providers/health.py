from __future__ import annotations

from time import perf_counter

from pydantic import BaseModel

from chorus.core.providers.base import ProviderDescriptor


class ProviderCheckResult(BaseModel):
    provider: str
    priority: int
    ok: bool
    latency_ms: float | None = None
    error: str | None = None


async def check_configured_providers(descriptors: list[ProviderDescriptor]) -> dict[str, ProviderCheckResult]:
    results: dict[str, ProviderCheckResult] = {}
    for d in sorted(descriptors, key=lambda x: x.priority):
        started = perf_counter()
        try:
            ok = await d.adapter.probe()
            error = None if ok else "probe failed"
        except Exception as exc:  # noqa: BLE001
            ok, error = False, str(exc)
        results[d.name] = ProviderCheckResult(
            provider=d.name,
            priority=d.priority,
            ok=ok,
            latency_ms=round((perf_counter() - started) * 1000, 2),
            error=error,
        )
    return results
