from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

from chorus.core.runtime.errors import RateLimitSignal

DEMO_PROVIDER = "demo"


@dataclass(slots=True, frozen=True)
class GenerationRequest:
    persona_id: str
    prompt: str
    context: str | None = None
    system_prompt: str | None = None
    temperature: float = 0.7
    max_tokens: int = 256

    def user_content(self) -> str:
        if self.context:
            return f"{self.context.strip()}\n\n{self.prompt.strip()}"
        return self.prompt.strip()


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int | None, completion_tokens: int | None, total_tokens: int | None = None) -> TokenUsage:
        p = max(0, int(prompt_tokens or 0))
        c = max(0, int(completion_tokens or 0))
        t = max(0, int(total_tokens)) if total_tokens is not None else p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)


@dataclass(slots=True, frozen=True)
class GenerationResult:
    content: str
    provider_name: str
    model_name: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = "stop"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationResult:
        usage = data.get("usage") or {}
        return cls(
            content=str(data["content"]),
            provider_name=str(data["provider_name"]),
            model_name=str(data.get("model_name", "")),
            usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens", 0)),
                completion_tokens=int(usage.get("completion_tokens", 0)),
                total_tokens=int(usage.get("total_tokens", 0)),
            ),
            finish_reason=str(data.get("finish_reason", "stop")),
        )


@dataclass(slots=True, frozen=True)
class AdapterReply:
    result: GenerationResult
    rate_limit: RateLimitSignal | None = None


class ProviderAdapter(ABC):
    name: str

    @abstractmethod
    async def call(self, request: GenerationRequest, timeout_seconds: float) -> AdapterReply:
        raise NotImplementedError

    async def probe(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


@dataclass(slots=True, frozen=True)
class ProviderDescriptor:
    name: str
    priority: int
    adapter: ProviderAdapter
