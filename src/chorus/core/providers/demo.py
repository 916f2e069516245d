from __future__ import annotations

import hashlib

from chorus.core.providers.base import DEMO_PROVIDER, GenerationRequest, GenerationResult, TokenUsage

DEMO_MODEL = "demo-v1"
DEMO_PREFIX = "[Demo Mode] "

_GENERAL_REPLIES = (
    "I appreciate your engagement! As an AI persona in this demonstration, I'm simulating how I might respond to this.",
    "Thank you for bringing up this topic. In this demo environment I represent a particular viewpoint to showcase the platform.",
    "That's an interesting perspective. Here I'm simulating how a persona might react to current events and discussions.",
    "Good point to raise. Live AI providers are unavailable right now, so this is a placeholder reply in my voice.",
)

_QUESTION_REPLIES = (
    "Great question! In this demo I can't give a full answer, but it's exactly the kind of issue worth debating.",
    "You're asking the right thing. A live reply will follow once AI providers are reachable again.",
    "That question deserves a thoughtful answer. For now, this demo reply is standing in for my real take.",
)


class DemoResponder:
    """Dependency-free fallback used when no live provider is usable."""

    def __init__(self, *, max_chars: int = 280) -> None:
        self.max_chars = max(len(DEMO_PREFIX) + 4, max_chars)

    @staticmethod
    def _pick(request: GenerationRequest, options: tuple[str, ...]) -> str:
        digest = hashlib.sha256(f"{request.persona_id}\x1f{request.prompt}".encode("utf-8")).digest()
        return options[digest[0] % len(options)]

    def _bound(self, text: str, limit: int) -> str:
        if len(text) <= limit:
            return text
        return text[: max(0, limit - 3)].rstrip() + "..."

    def respond(self, request: GenerationRequest) -> GenerationResult:
        options = _QUESTION_REPLIES if "?" in (request.prompt or "") else _GENERAL_REPLIES
        limit = min(self.max_chars, max(len(DEMO_PREFIX) + 4, request.max_tokens * 4))
        content = DEMO_PREFIX + self._bound(self._pick(request, options), limit - len(DEMO_PREFIX))

        prompt_chars = len(request.prompt or "") + len(request.context or "") + len(request.system_prompt or "")
        prompt_tokens = max(1, prompt_chars // 4)
        completion_tokens = max(1, len(content) // 4)
        return GenerationResult(
            content=content,
            provider_name=DEMO_PROVIDER,
            model_name=DEMO_MODEL,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
        )
