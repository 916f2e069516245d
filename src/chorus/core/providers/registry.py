from __future__ import annotations

import httpx

from chorus.core.config.schema import AppConfig, ProviderConfig
from chorus.core.providers.anthropic_adapter import AnthropicAdapter
from chorus.core.providers.base import ProviderDescriptor
from chorus.core.providers.gemini_adapter import GeminiAdapter
from chorus.core.providers.http_adapter import HttpProviderAdapter, api_key_from_env
from chorus.core.providers.openai_adapter import OpenAIAdapter

ADAPTER_TYPES: dict[str, type[HttpProviderAdapter]] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
}


def _provider_configs(cfg: AppConfig) -> dict[str, ProviderConfig]:
    return {
        "anthropic": cfg.providers.anthropic,
        "openai": cfg.providers.openai,
        "gemini": cfg.providers.gemini,
    }


def build_descriptors(cfg: AppConfig, transport: httpx.AsyncBaseTransport | None = None) -> list[ProviderDescriptor]:
    """Providers that are disabled or lack credentials are left out entirely."""
    descriptors: list[ProviderDescriptor] = []
    for name, pcfg in _provider_configs(cfg).items():
        if not pcfg.enabled:
            continue
        api_key = api_key_from_env(pcfg.api_key_env)
        if api_key is None:
            continue
        adapter = ADAPTER_TYPES[name](api_key=api_key, model=pcfg.model, base_url=pcfg.base_url, transport=transport)
        descriptors.append(ProviderDescriptor(name=name, priority=pcfg.priority, adapter=adapter))
    return descriptors


def skipped_providers(cfg: AppConfig) -> dict[str, str]:
    out: dict[str, str] = {}
    for name, pcfg in _provider_configs(cfg).items():
        if not pcfg.enabled:
            out[name] = "disabled"
        elif api_key_from_env(pcfg.api_key_env) is None:
            out[name] = f"missing api key in env {pcfg.api_key_env or '<unset>'}"
    return out
