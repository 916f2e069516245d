from __future__ import annotations

from typing import Any

import httpx

from chorus.core.providers.base import AdapterReply, GenerationRequest, GenerationResult, TokenUsage
from chorus.core.providers.http_adapter import HttpProviderAdapter
from chorus.core.providers.ratelimits import signal_from_headers
from chorus.core.runtime.errors import MalformedResponseError, RateLimitSignal

_STOP_REASONS = {"end_turn": "stop", "stop_sequence": "stop", "max_tokens": "length"}


class AnthropicAdapter(HttpProviderAdapter):
    name = "anthropic"
    default_base_url = "https://api.anthropic.com"
    default_model = "claude-3-5-sonnet-latest"
    api_version = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def rate_limit_from_headers(self, headers: httpx.Headers) -> RateLimitSignal | None:
        return signal_from_headers(
            headers,
            remaining_header="anthropic-ratelimit-requests-remaining",
            reset_header="anthropic-ratelimit-requests-reset",
            now=self._clock(),
            reset_is_duration=False,
        )

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "temperature": min(request.temperature, 1.0),
            "messages": [{"role": "user", "content": request.user_content()}],
            "metadata": {"user_id": request.persona_id},
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        return payload

    def parse_body(self, body: dict[str, Any]) -> GenerationResult:
        blocks = body.get("content")
        if not isinstance(blocks, list) or not blocks:
            raise MalformedResponseError("anthropic response has no content blocks", provider=self.name)
        text_block = next((b for b in blocks if isinstance(b, dict) and b.get("type") == "text"), None)
        if text_block is None:
            kinds = sorted({str(b.get("type")) for b in blocks if isinstance(b, dict)})
            raise MalformedResponseError(f"anthropic response has no text block: {kinds}", provider=self.name)
        text = text_block.get("text")
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError("anthropic text block is empty", provider=self.name)

        usage = body.get("usage") or {}
        stop_reason = str(body.get("stop_reason") or "end_turn")
        return GenerationResult(
            content=text.strip(),
            provider_name=self.name,
            model_name=str(body.get("model") or self.model),
            usage=TokenUsage.of(usage.get("input_tokens"), usage.get("output_tokens")),
            finish_reason=_STOP_REASONS.get(stop_reason, stop_reason),
        )

    async def call(self, request: GenerationRequest, timeout_seconds: float) -> AdapterReply:
        body, signal = await self._request_json(
            "POST", "/v1/messages", payload=self.build_payload(request), timeout_seconds=timeout_seconds
        )
        return AdapterReply(result=self.parse_body(body), rate_limit=signal)

    async def probe(self) -> bool:
        try:
            await self._request_json("GET", "/v1/models", payload=None, timeout_seconds=3.0)
            return True
        except Exception:  # noqa: BLE001
            return False
