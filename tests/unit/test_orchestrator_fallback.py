from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chorus.core.cache.response_cache import InMemoryResponseCache
from chorus.core.orchestrator.engine import Orchestrator
from chorus.core.providers.base import (
    AdapterReply,
    GenerationRequest,
    GenerationResult,
    ProviderAdapter,
    ProviderDescriptor,
    TokenUsage,
)
from chorus.core.runtime.errors import InvalidRequestError, MalformedResponseError, ProviderError, RateLimitSignal
from chorus.core.runtime.health_tracker import ProviderHealthTracker
from chorus.core.telemetry.tracing import recent_traces


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedAdapter(ProviderAdapter):
    def __init__(self, name: str, text: str = "ok", *, fail: Exception | None = None, delay: float = 0.0):
        self.name = name
        self.text = text
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def call(self, request: GenerationRequest, timeout_seconds: float) -> AdapterReply:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        return AdapterReply(
            result=GenerationResult(
                content=self.text,
                provider_name=self.name,
                model_name=f"{self.name}-model",
                usage=TokenUsage.of(5, 7),
            )
        )


def _orchestrator(*adapters_with_priority, clock=None, threshold=3, timeout=1.0):
    clock = clock or FakeClock()
    descriptors = [ProviderDescriptor(name=a.name, priority=p, adapter=a) for a, p in adapters_with_priority]
    return Orchestrator(
        providers=descriptors,
        health_tracker=ProviderHealthTracker(failure_threshold=threshold, cool_down_seconds=60, clock=clock),
        cache=InMemoryResponseCache(clock=clock),
        provider_timeout_seconds=timeout,
    )


def _request(prompt: str = "What do you think about the new bill?", persona: str = "persona-1") -> GenerationRequest:
    return GenerationRequest(persona_id=persona, prompt=prompt)


@pytest.mark.asyncio
async def test_timeout_on_first_provider_falls_through_to_second():
    p1 = ScriptedAdapter("p1", delay=5.0)
    p2 = ScriptedAdapter("p2", text="Hello")
    p3 = ScriptedAdapter("p3", text="never")
    orch = _orchestrator((p3, 3), (p1, 1), (p2, 2), timeout=0.05)

    result = await orch.generate(_request())

    assert result.content == "Hello"
    assert result.provider_name == "p2"
    assert p1.calls == 1
    assert p3.calls == 0
    assert orch.health_tracker.snapshot("p1")["consecutive_failures"] == 1


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold_and_skips_provider_during_cool_down():
    clock = FakeClock()
    p1 = ScriptedAdapter("p1", fail=ProviderError("boom", provider="p1"))
    orch = _orchestrator((p1, 1), clock=clock, threshold=3)

    for i in range(3):
        result = await orch.generate(_request(prompt=f"prompt {i}"))
        assert result.provider_name == "demo"
    assert p1.calls == 3

    fourth = await orch.generate(_request(prompt="prompt 4"))
    assert fourth.provider_name == "demo"
    assert p1.calls == 3
    assert orch.health_status()[0]["state"] == "open"

    clock.advance(60)
    await orch.generate(_request(prompt="prompt 5"))
    assert p1.calls == 4


@pytest.mark.asyncio
async def test_open_breaker_stays_open_even_when_every_provider_fails():
    clock = FakeClock()
    p1 = ScriptedAdapter("p1", fail=ProviderError("down", provider="p1"))
    p2 = ScriptedAdapter("p2", fail=ProviderError("down", provider="p2"))
    orch = _orchestrator((p1, 1), (p2, 2), clock=clock, threshold=2)

    for i in range(2):
        await orch.generate(_request(prompt=f"q{i}"))
    assert [row["state"] for row in orch.health_status()] == ["open", "open"]

    clock.advance(30)
    result = await orch.generate(_request(prompt="q-final"))
    assert result.provider_name == "demo"
    assert (p1.calls, p2.calls) == (2, 2)


@pytest.mark.asyncio
async def test_cache_hit_returns_identical_content_without_provider_calls():
    p1 = ScriptedAdapter("p1", text="cached reply")
    orch = _orchestrator((p1, 1))

    first = await orch.generate(_request())
    second = await orch.generate(_request())

    assert first.content == second.content
    assert p1.calls == 1
    snap = orch.metrics_snapshot()
    assert snap["total_requests"] == 2
    assert snap["cache_hits"] == 1
    assert snap["provider_requests"] == {"p1": 1}


@pytest.mark.asyncio
async def test_cache_expiry_reinvokes_providers():
    clock = FakeClock()
    p1 = ScriptedAdapter("p1", text="fresh")
    orch = _orchestrator((p1, 1), clock=clock)

    await orch.generate(_request())
    clock.advance(1800)
    await orch.generate(_request())
    assert p1.calls == 1

    clock.advance(2200)
    await orch.generate(_request())
    assert p1.calls == 2


@pytest.mark.asyncio
async def test_demo_response_is_not_cached():
    p1 = ScriptedAdapter("p1", fail=ProviderError("down", provider="p1"))
    orch = _orchestrator((p1, 1), threshold=10)

    first = await orch.generate(_request())
    assert first.provider_name == "demo"

    p1.fail = None
    p1.text = "live again"
    second = await orch.generate(_request())
    assert second.provider_name == "p1"
    assert second.content == "live again"


@pytest.mark.asyncio
async def test_no_providers_configured_still_answers():
    orch = _orchestrator()
    result = await orch.generate(_request())
    assert result.provider_name == "demo"
    assert result.content
    assert orch.status()["demo_only"] is True


@pytest.mark.asyncio
async def test_malformed_and_unexpected_errors_count_as_failures():
    p1 = ScriptedAdapter("p1", fail=MalformedResponseError("tool_use only", provider="p1"))
    p2 = ScriptedAdapter("p2", fail=KeyError("choices"))
    p3 = ScriptedAdapter("p3", text="  ")
    orch = _orchestrator((p1, 1), (p2, 2), (p3, 3))

    result = await orch.generate(_request())

    assert result.provider_name == "demo"
    for name in ("p1", "p2", "p3"):
        assert orch.health_tracker.snapshot(name)["consecutive_failures"] == 1


@pytest.mark.asyncio
async def test_rate_limit_signal_excludes_provider_until_reset():
    clock = FakeClock()
    reset_at = clock.now + timedelta(seconds=30)

    class QuotaAdapter(ScriptedAdapter):
        async def call(self, request, timeout_seconds):
            reply = await super().call(request, timeout_seconds)
            return AdapterReply(result=reply.result, rate_limit=RateLimitSignal(remaining=0, reset_at=reset_at))

    p1 = QuotaAdapter("p1", text="last one")
    p2 = ScriptedAdapter("p2", text="backup")
    orch = _orchestrator((p1, 1), (p2, 2), clock=clock)

    assert (await orch.generate(_request(prompt="a"))).provider_name == "p1"
    assert (await orch.generate(_request(prompt="b"))).provider_name == "p2"
    assert orch.health_status()[0]["state"] == "rate_limited"

    clock.now = reset_at
    assert (await orch.generate(_request(prompt="c"))).provider_name == "p1"


@pytest.mark.asyncio
async def test_provider_name_comes_from_descriptor():
    adapter = ScriptedAdapter("vendor-internal-name", text="hi")
    orch = Orchestrator(providers=[ProviderDescriptor(name="primary", priority=1, adapter=adapter)])
    result = await orch.generate(_request())
    assert result.provider_name == "primary"


@pytest.mark.asyncio
async def test_cancellation_propagates_without_recording_failure():
    started = asyncio.Event()

    class HangingAdapter(ScriptedAdapter):
        async def call(self, request, timeout_seconds):
            self.calls += 1
            started.set()
            await asyncio.sleep(30)
            raise AssertionError("unreachable")

    p1 = HangingAdapter("p1")
    p2 = ScriptedAdapter("p2")
    orch = _orchestrator((p1, 1), (p2, 2), timeout=60)

    task = asyncio.create_task(orch.generate(_request()))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert p2.calls == 0
    assert orch.health_tracker.snapshot("p1")["consecutive_failures"] == 0
    assert orch.metrics_snapshot()["total_requests"] == 0


@pytest.mark.asyncio
async def test_cache_backend_errors_degrade_to_miss():
    class BrokenCache(InMemoryResponseCache):
        async def get(self, key):
            raise ConnectionError("redis down")

        async def put(self, key, value, ttl_seconds):
            raise ConnectionError("redis down")

    p1 = ScriptedAdapter("p1", text="still fine")
    orch = Orchestrator(providers=[ProviderDescriptor(name="p1", priority=1, adapter=p1)], cache=BrokenCache())

    result = await orch.generate(_request())
    assert result.content == "still fine"


def test_duplicate_or_reserved_provider_names_are_rejected():
    a = ScriptedAdapter("x")
    with pytest.raises(ValueError, match="unique"):
        Orchestrator(providers=[ProviderDescriptor("x", 1, a), ProviderDescriptor("x", 2, a)])
    with pytest.raises(ValueError, match="reserved"):
        Orchestrator(providers=[ProviderDescriptor("demo", 1, a)])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"prompt": ""},
        {"prompt": "   "},
        {"max_tokens": 0},
        {"max_tokens": -5},
        {"max_tokens": True},
        {"temperature": -0.1},
        {"temperature": 2.5},
        {"temperature": float("nan")},
    ],
)
async def test_invalid_requests_are_rejected_before_any_provider_call(overrides):
    p1 = ScriptedAdapter("p1")
    orch = _orchestrator((p1, 1))
    fields = {"persona_id": "persona-1", "prompt": "hello", **overrides}

    with pytest.raises(InvalidRequestError):
        await orch.generate(GenerationRequest(**fields))

    assert p1.calls == 0
    assert orch.metrics_snapshot()["total_requests"] == 0


@pytest.mark.asyncio
async def test_failed_attempt_trace_carries_retryability_and_signature():
    p1 = ScriptedAdapter("p1", fail=ProviderError("upstream 503 on shard 7", provider="p1", status_code=503))
    orch = _orchestrator((p1, 1))

    await orch.generate(_request(prompt="trace me"))

    failed = [t for t in recent_traces(limit=500) if t["event"] == "provider_failed"][-1]
    assert failed["provider"] == "p1"
    assert failed["retryable"] is True
    assert failed["error_signature"] == "upstream # on shard #"
    assert failed["http_status"] == 503
