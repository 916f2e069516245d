from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chorus.core.providers.anthropic_adapter import AnthropicAdapter
from chorus.core.providers.base import GenerationRequest
from chorus.core.providers.gemini_adapter import GeminiAdapter
from chorus.core.providers.openai_adapter import OpenAIAdapter
from chorus.core.runtime.errors import MalformedResponseError, ProviderError, ProviderTimeoutError, RateLimitedError

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

REQ = GenerationRequest(
    persona_id="persona-7",
    prompt="Reply to this post",
    context="Earlier: the council voted yes.",
    system_prompt="You are a pragmatic centrist.",
    temperature=0.4,
    max_tokens=120,
)


def _transport(status: int, body, headers: dict[str, str] | None = None, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body, headers=headers)
        return httpx.Response(status, text=body, headers=headers)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_anthropic_maps_request_and_text_block():
    seen: list[httpx.Request] = []
    body = {
        "model": "claude-test",
        "content": [{"type": "text", "text": " Measured take. "}],
        "stop_reason": "max_tokens",
        "usage": {"input_tokens": 30, "output_tokens": 12},
    }
    headers = {
        "anthropic-ratelimit-requests-remaining": "7",
        "anthropic-ratelimit-requests-reset": "2026-01-01T00:00:30Z",
    }
    adapter = AnthropicAdapter(api_key="sk-a", transport=_transport(200, body, headers, seen), clock=lambda: NOW)

    reply = await adapter.call(REQ, timeout_seconds=2)

    sent = json.loads(seen[0].content)
    assert seen[0].url.path == "/v1/messages"
    assert seen[0].headers["x-api-key"] == "sk-a"
    assert sent["system"] == "You are a pragmatic centrist."
    assert sent["max_tokens"] == 120
    assert sent["messages"][0]["content"].endswith("Reply to this post")
    assert reply.result.content == "Measured take."
    assert reply.result.finish_reason == "length"
    assert reply.result.usage.total_tokens == 42
    assert reply.rate_limit.remaining == 7
    assert reply.rate_limit.reset_at == NOW + timedelta(seconds=30)


@pytest.mark.asyncio
async def test_anthropic_non_text_content_is_malformed():
    body = {"content": [{"type": "tool_use", "id": "t1", "name": "x", "input": {}}], "usage": {}}
    adapter = AnthropicAdapter(api_key="sk-a", transport=_transport(200, body))
    with pytest.raises(MalformedResponseError, match="no text block"):
        await adapter.call(REQ, timeout_seconds=2)


@pytest.mark.asyncio
async def test_openai_maps_choices_and_duration_reset():
    seen: list[httpx.Request] = []
    body = {
        "model": "gpt-test",
        "choices": [{"message": {"role": "assistant", "content": "Fair point."}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 20, "completion_tokens": 3, "total_tokens": 23},
    }
    headers = {"x-ratelimit-remaining-requests": "0", "x-ratelimit-reset-requests": "1m30s"}
    adapter = OpenAIAdapter(api_key="sk-o", transport=_transport(200, body, headers, seen), clock=lambda: NOW)

    reply = await adapter.call(REQ, timeout_seconds=2)

    sent = json.loads(seen[0].content)
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["authorization"] == "Bearer sk-o"
    assert [m["role"] for m in sent["messages"]] == ["system", "user"]
    assert reply.result.content == "Fair point."
    assert reply.result.model_name == "gpt-test"
    assert reply.result.usage.total_tokens == 23
    assert reply.rate_limit.remaining == 0
    assert reply.rate_limit.reset_at == NOW + timedelta(seconds=90)


@pytest.mark.asyncio
async def test_openai_null_content_is_malformed():
    body = {"choices": [{"message": {"role": "assistant", "content": None, "tool_calls": []}}]}
    adapter = OpenAIAdapter(api_key="sk-o", transport=_transport(200, body))
    with pytest.raises(MalformedResponseError):
        await adapter.call(REQ, timeout_seconds=2)


@pytest.mark.asyncio
async def test_gemini_joins_text_parts_and_passes_key():
    seen: list[httpx.Request] = []
    body = {
        "candidates": [{"content": {"parts": [{"text": "Part one, "}, {"text": "part two."}]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 11, "candidatesTokenCount": 5, "totalTokenCount": 16},
    }
    adapter = GeminiAdapter(api_key="g-key", model="gemini-test", transport=_transport(200, body, seen=seen))

    reply = await adapter.call(REQ, timeout_seconds=2)

    sent = json.loads(seen[0].content)
    assert seen[0].url.path == "/v1beta/models/gemini-test:generateContent"
    assert seen[0].url.params["key"] == "g-key"
    assert sent["generationConfig"]["maxOutputTokens"] == 120
    assert sent["systemInstruction"]["parts"][0]["text"] == "You are a pragmatic centrist."
    assert reply.result.content == "Part one, part two."
    assert reply.result.usage.total_tokens == 16
    assert reply.rate_limit is None


@pytest.mark.asyncio
async def test_gemini_safety_block_is_malformed():
    body = {"candidates": [{"finishReason": "SAFETY", "content": {"parts": []}}]}
    adapter = GeminiAdapter(api_key="g-key", transport=_transport(200, body))
    with pytest.raises(MalformedResponseError, match="safety"):
        await adapter.call(REQ, timeout_seconds=2)


@pytest.mark.asyncio
async def test_http_429_carries_retry_after_signal():
    adapter = OpenAIAdapter(api_key="sk-o", transport=_transport(429, {"error": "slow down"}, {"retry-after": "15"}), clock=lambda: NOW)
    with pytest.raises(RateLimitedError) as info:
        await adapter.call(REQ, timeout_seconds=2)
    assert info.value.rate_limit.remaining == 0
    assert info.value.rate_limit.reset_at == NOW + timedelta(seconds=15)


@pytest.mark.asyncio
async def test_status_codes_are_classified():
    server_error = OpenAIAdapter(api_key="k", transport=_transport(503, {"error": "unavailable"}))
    with pytest.raises(ProviderError) as info:
        await server_error.call(REQ, timeout_seconds=2)
    assert info.value.transient is True
    assert info.value.status_code == 503

    bad_request = OpenAIAdapter(api_key="k", transport=_transport(400, {"error": "bad"}))
    with pytest.raises(ProviderError) as info:
        await bad_request.call(REQ, timeout_seconds=2)
    assert info.value.transient is False


@pytest.mark.asyncio
async def test_non_json_body_is_malformed():
    adapter = AnthropicAdapter(api_key="k", transport=_transport(200, "<html>gateway</html>"))
    with pytest.raises(MalformedResponseError, match="non-JSON"):
        await adapter.call(REQ, timeout_seconds=2)


@pytest.mark.asyncio
async def test_transport_errors_are_retried_once_then_wrapped():
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        raise httpx.ReadTimeout("read timed out", request=request)

    adapter = AnthropicAdapter(api_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderTimeoutError):
        await adapter.call(REQ, timeout_seconds=2)
    assert attempts["n"] == 2
    await adapter.aclose()


@pytest.mark.asyncio
async def test_probe_reports_failure_without_raising():
    adapter = GeminiAdapter(api_key="k", transport=_transport(401, {"error": "denied"}))
    assert await adapter.probe() is False
    ok = OpenAIAdapter(api_key="k", transport=_transport(200, {"data": []}))
    assert await ok.probe() is True


@pytest.mark.asyncio
async def test_http_429_with_absurd_retry_after_still_raises_rate_limited():
    adapter = OpenAIAdapter(api_key="sk-o", transport=_transport(429, {"error": "slow down"}, {"retry-after": "1e20"}), clock=lambda: NOW)
    with pytest.raises(RateLimitedError) as info:
        await adapter.call(REQ, timeout_seconds=2)
    assert info.value.rate_limit.remaining == 0
    assert info.value.rate_limit.reset_at == NOW + timedelta(seconds=60)
