from __future__ import annotations

import math
import uuid
from dataclasses import replace
from time import perf_counter

from chorus.core.cache.fingerprint import fingerprint
from chorus.core.cache.response_cache import ResponseCache
from chorus.core.providers.base import DEMO_PROVIDER, GenerationRequest, GenerationResult, ProviderDescriptor
from chorus.core.providers.demo import DemoResponder
from chorus.core.runtime.errors import (
    InvalidRequestError,
    MalformedResponseError,
    ProviderError,
    classify_error,
    compact_error_summary,
)
from chorus.core.runtime.health_tracker import ProviderHealthTracker
from chorus.core.runtime.timeouts import run_with_timeout
from chorus.core.telemetry.logging import get_logger
from chorus.core.telemetry.metrics import MetricsAccumulator
from chorus.core.telemetry.tracing import TraceContext, trace_event


def validate_request(request: GenerationRequest) -> None:
    if not isinstance(request.prompt, str) or not request.prompt.strip():
        raise InvalidRequestError("prompt must be a non-empty string")
    if isinstance(request.max_tokens, bool) or not isinstance(request.max_tokens, int) or request.max_tokens <= 0:
        raise InvalidRequestError(f"max_tokens must be a positive integer, got {request.max_tokens!r}")
    temperature = request.temperature
    if not isinstance(temperature, (int, float)) or math.isnan(temperature) or not 0.0 <= temperature <= 2.0:
        raise InvalidRequestError(f"temperature must be within [0, 2], got {temperature!r}")


class Orchestrator:
    """Generates persona replies across prioritized providers.

    ``generate`` only ever raises ``InvalidRequestError`` (or task cancellation);
    every provider-level failure ends in the next provider or the demo responder.
    """

    def __init__(
        self,
        *,
        providers: list[ProviderDescriptor],
        health_tracker: ProviderHealthTracker | None = None,
        cache: ResponseCache | None = None,
        demo: DemoResponder | None = None,
        metrics: MetricsAccumulator | None = None,
        provider_timeout_seconds: float = 8.0,
        cache_ttl_seconds: float = 3600.0,
    ) -> None:
        names = [d.name for d in providers]
        if len(set(names)) != len(names):
            raise ValueError(f"provider names must be unique: {names}")
        if DEMO_PROVIDER in names:
            raise ValueError(f"provider name {DEMO_PROVIDER!r} is reserved for the demo responder")
        self._providers = sorted(providers, key=lambda d: d.priority)
        self.health_tracker = health_tracker or ProviderHealthTracker()
        self.cache = cache
        self.demo = demo or DemoResponder()
        self.metrics = metrics or MetricsAccumulator()
        self.provider_timeout_seconds = provider_timeout_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.logger = get_logger("chorus.orchestrator")

    @property
    def providers(self) -> list[ProviderDescriptor]:
        return list(self._providers)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        validate_request(request)
        started = perf_counter()
        ctx = TraceContext(request_id=uuid.uuid4().hex[:12], persona_id=str(request.persona_id))
        key = fingerprint(request)

        cached = await self._cache_get(key, ctx)
        if cached is not None:
            trace_event(self.logger, ctx, "cache_hit", "ok", {"provider": cached.provider_name})
            self.metrics.record(cached.provider_name, self._elapsed_ms(started), cache_hit=True)
            return cached

        for descriptor in self._providers:
            result = await self._attempt(descriptor, request, ctx)
            if result is None:
                continue
            await self._cache_put(key, result, ctx)
            self.metrics.record(descriptor.name, self._elapsed_ms(started))
            return result

        result = self.demo.respond(request)
        trace_event(self.logger, ctx, "demo_fallback", "ok", {"providers_configured": len(self._providers)})
        self.metrics.record(DEMO_PROVIDER, self._elapsed_ms(started))
        return result

    async def _attempt(
        self, descriptor: ProviderDescriptor, request: GenerationRequest, ctx: TraceContext
    ) -> GenerationResult | None:
        name = descriptor.name
        if not self.health_tracker.may_attempt(name):
            trace_event(
                self.logger, ctx, "provider_skipped", "blocked", {"provider": name, "state": self.health_tracker.classify(name)}
            )
            return None

        trace_event(self.logger, ctx, "provider_attempt", "started", {"provider": name})
        attempt_started = perf_counter()
        try:
            reply = await run_with_timeout(
                descriptor.adapter.call(request, self.provider_timeout_seconds),
                self.provider_timeout_seconds,
                provider=name,
            )
            if not reply.result.content.strip():
                raise MalformedResponseError(f"{name} returned empty content", provider=name)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(name, exc, ctx)
            return None

        self.health_tracker.record_success(name)
        if reply.rate_limit is not None:
            self.health_tracker.record_rate_limit_signal(name, reply.rate_limit.remaining, reply.rate_limit.reset_at)
        result = reply.result if reply.result.provider_name == name else replace(reply.result, provider_name=name)
        trace_event(
            self.logger,
            ctx,
            "provider_ok",
            "ok",
            {
                "provider": name,
                "model": result.model_name,
                "latency_ms": self._elapsed_ms(attempt_started),
                "total_tokens": result.usage.total_tokens,
            },
        )
        return result

    def _record_failure(self, name: str, exc: Exception, ctx: TraceContext) -> None:
        info = classify_error(exc, provider=name)
        circuit_opened = self.health_tracker.record_failure(name)
        if isinstance(exc, ProviderError) and exc.rate_limit is not None:
            self.health_tracker.record_rate_limit_signal(name, exc.rate_limit.remaining, exc.rate_limit.reset_at)
        trace_event(
            self.logger,
            ctx,
            "provider_failed",
            "malformed" if info.error_kind == "malformed" else "error",
            {
                "provider": name,
                "error_kind": info.error_kind,
                "retryable": info.retryable,
                "error_signature": info.message_signature,
                "error": compact_error_summary(exc),
                "http_status": info.http_status,
                "circuit_opened": circuit_opened,
            },
        )

    async def _cache_get(self, key: str, ctx: TraceContext) -> GenerationResult | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except Exception as exc:  # noqa: BLE001
            trace_event(self.logger, ctx, "cache_error", "error", {"operation": "get", "error": compact_error_summary(exc)})
            return None

    async def _cache_put(self, key: str, result: GenerationResult, ctx: TraceContext) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.put(key, result, self.cache_ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            trace_event(self.logger, ctx, "cache_error", "error", {"operation": "put", "error": compact_error_summary(exc)})

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((perf_counter() - started) * 1000, 3)

    def metrics_snapshot(self) -> dict:
        return self.metrics.snapshot()

    def health_status(self) -> list[dict]:
        return [
            {"name": d.name, "priority": d.priority, **self.health_tracker.snapshot(d.name)}
            for d in self._providers
        ]

    def status(self) -> dict:
        available = [d.name for d in self._providers if self.health_tracker.may_attempt(d.name)]
        return {
            "providers": len(self._providers),
            "available": len(available),
            "available_providers": available,
            "demo_only": not available,
            "metrics": self.metrics_snapshot(),
            "cache": self.cache.stats() if self.cache is not None else {"backend": "disabled"},
        }

    def reset_circuit_breakers(self) -> None:
        self.health_tracker.reset()

    async def clear_cache(self) -> None:
        if self.cache is not None:
            await self.cache.clear()

    async def aclose(self) -> None:
        for d in self._providers:
            await d.adapter.aclose()
        if self.cache is not None:
            await self.cache.aclose()
