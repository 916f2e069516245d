from __future__ import annotations

import httpx

from chorus.core.cache.response_cache import InMemoryResponseCache, ResponseCache
from chorus.core.config.schema import AppConfig
from chorus.core.orchestrator.engine import Orchestrator
from chorus.core.providers.demo import DemoResponder
from chorus.core.providers.registry import build_descriptors, skipped_providers
from chorus.core.runtime.health_tracker import ProviderHealthTracker
from chorus.core.telemetry.logging import configure_logging, get_logger


def build_cache(cfg: AppConfig) -> ResponseCache | None:
    if not cfg.cache.enabled:
        return None
    if cfg.cache.backend == "redis":
        from chorus.core.cache.redis_cache import RedisResponseCache

        return RedisResponseCache(cfg.cache.redis_url, key_prefix=cfg.cache.key_prefix)
    return InMemoryResponseCache(max_entries=cfg.cache.max_entries)


def build_orchestrator(cfg: AppConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> Orchestrator:
    configure_logging(cfg.telemetry.log_level, cfg.telemetry.json_logs)
    logger = get_logger("chorus.factory")

    descriptors = build_descriptors(cfg, transport=transport)
    for name, reason in skipped_providers(cfg).items():
        logger.info("provider_omitted", provider=name, reason=reason)
    if not descriptors:
        logger.warning("no_providers_configured", mode="demo_only")

    orchestrator = Orchestrator(
        providers=descriptors,
        health_tracker=ProviderHealthTracker(
            failure_threshold=cfg.runtime.failure_threshold,
            cool_down_seconds=cfg.runtime.cool_down_seconds,
        ),
        cache=build_cache(cfg),
        demo=DemoResponder(max_chars=cfg.demo.max_chars),
        provider_timeout_seconds=cfg.runtime.provider_timeout_seconds,
        cache_ttl_seconds=cfg.runtime.cache_ttl_seconds,
    )
    logger.info(
        "orchestrator_ready",
        providers=[d.name for d in orchestrator.providers],
        cache=cfg.cache.backend if cfg.cache.enabled else "disabled",
    )
    return orchestrator
