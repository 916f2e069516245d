from __future__ import annotations

from typing import Any

from chorus.core.providers.base import AdapterReply, GenerationRequest, GenerationResult, TokenUsage
from chorus.core.providers.http_adapter import HttpProviderAdapter
from chorus.core.runtime.errors import MalformedResponseError

_FINISH_REASONS = {"STOP": "stop", "MAX_TOKENS": "length"}


class GeminiAdapter(HttpProviderAdapter):
    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com"
    default_model = "gemini-1.5-flash"

    def _params(self) -> dict[str, str]:
        return {"key": self.api_key}

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.user_content()}]}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}
        return payload

    def parse_body(self, body: dict[str, Any]) -> GenerationResult:
        candidates = body.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            blocked = (body.get("promptFeedback") or {}).get("blockReason")
            raise MalformedResponseError(f"gemini response has no candidates (block={blocked})", provider=self.name)
        candidate = candidates[0]
        finish = str(candidate.get("finishReason") or "STOP")
        if finish == "SAFETY":
            raise MalformedResponseError("gemini candidate was blocked by safety filters", provider=self.name)

        parts = (candidate.get("content") or {}).get("parts") or []
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        text = "".join(texts).strip()
        if not text:
            raise MalformedResponseError("gemini candidate carries no text parts", provider=self.name)

        usage = body.get("usageMetadata") or {}
        return GenerationResult(
            content=text,
            provider_name=self.name,
            model_name=str(body.get("modelVersion") or self.model),
            usage=TokenUsage.of(
                usage.get("promptTokenCount"), usage.get("candidatesTokenCount"), usage.get("totalTokenCount")
            ),
            finish_reason=_FINISH_REASONS.get(finish, finish.lower()),
        )

    async def call(self, request: GenerationRequest, timeout_seconds: float) -> AdapterReply:
        body, signal = await self._request_json(
            "POST",
            f"/v1beta/models/{self.model}:generateContent",
            payload=self.build_payload(request),
            timeout_seconds=timeout_seconds,
        )
        return AdapterReply(result=self.parse_body(body), rate_limit=signal)

    async def probe(self) -> bool:
        try:
            await self._request_json("GET", "/v1beta/models", payload=None, timeout_seconds=3.0)
            return True
        except Exception:  # noqa: BLE001
            return False
