from __future__ import annotations

from typing import Any

import httpx

from chorus.core.providers.base import AdapterReply, GenerationRequest, GenerationResult, TokenUsage
from chorus.core.providers.http_adapter import HttpProviderAdapter
from chorus.core.providers.ratelimits import signal_from_headers
from chorus.core.runtime.errors import MalformedResponseError, RateLimitSignal


class OpenAIAdapter(HttpProviderAdapter):
    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def rate_limit_from_headers(self, headers: httpx.Headers) -> RateLimitSignal | None:
        return signal_from_headers(
            headers,
            remaining_header="x-ratelimit-remaining-requests",
            reset_header="x-ratelimit-reset-requests",
            now=self._clock(),
            reset_is_duration=True,
        )

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_content()})
        return {
            "model": self.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "user": request.persona_id,
        }

    def parse_body(self, body: dict[str, Any]) -> GenerationResult:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedResponseError("openai response has no choices", provider=self.name)
        choice = choices[0]
        message = choice.get("message") or {}
        text = message.get("content") if isinstance(message, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError("openai choice carries no text content", provider=self.name)

        usage = body.get("usage") or {}
        return GenerationResult(
            content=text.strip(),
            provider_name=self.name,
            model_name=str(body.get("model") or self.model),
            usage=TokenUsage.of(usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")),
            finish_reason=str(choice.get("finish_reason") or "stop"),
        )

    async def call(self, request: GenerationRequest, timeout_seconds: float) -> AdapterReply:
        body, signal = await self._request_json(
            "POST", "/chat/completions", payload=self.build_payload(request), timeout_seconds=timeout_seconds
        )
        return AdapterReply(result=self.parse_body(body), rate_limit=signal)

    async def probe(self) -> bool:
        try:
            await self._request_json("GET", "/models", payload=None, timeout_seconds=3.0)
            return True
        except Exception:  # noqa: BLE001
            return False
