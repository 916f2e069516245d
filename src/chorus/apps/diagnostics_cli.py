from __future__ import annotations

import asyncio

from chorus.cli import base_parser
from chorus.core.config.loader import load_app_config
from chorus.core.orchestrator.engine import Orchestrator
from chorus.core.orchestrator.factory import build_orchestrator
from chorus.core.providers.base import GenerationRequest
from chorus.core.providers.health import check_configured_providers
from chorus.core.providers.registry import skipped_providers
from chorus.core.runtime.errors import InvalidRequestError


async def _check_providers(orchestrator: Orchestrator) -> None:
    results = await check_configured_providers(orchestrator.providers)
    print("provider-checks:")
    if not results:
        print("- none configured (demo only)")
    for item in results.values():
        print(f"- {item.provider}: priority={item.priority} ok={item.ok} latency_ms={item.latency_ms} error={item.error}")


async def _generate(orchestrator: Orchestrator, persona_id: str, prompt: str, context: str | None) -> int:
    try:
        result = await orchestrator.generate(GenerationRequest(persona_id=persona_id, prompt=prompt, context=context))
    except InvalidRequestError as exc:
        print(f"generate-invalid error={exc}")
        return 2
    print("generate:")
    print(f"- provider={result.provider_name} model={result.model_name} finish={result.finish_reason}")
    print(
        f"- usage prompt={result.usage.prompt_tokens} completion={result.usage.completion_tokens} "
        f"total={result.usage.total_tokens}"
    )
    print(f"- content={result.content}")
    return 0


async def _run(args) -> int:
    cfg = load_app_config(instance_path=args.config)
    orchestrator = build_orchestrator(cfg)
    rc = 0
    try:
        if args.check_providers:
            await _check_providers(orchestrator)
        if args.generate is not None:
            rc = await _generate(orchestrator, args.persona, args.generate, args.context)
        if args.provider_health:
            print("provider-health:")
            rows = orchestrator.health_status()
            if not rows:
                print("- none configured (demo only)")
            for row in rows:
                print(
                    f"- {row['name']}: priority={row['priority']} state={row['state']} "
                    f"failures={row['consecutive_failures']} open_until={row['circuit_open_until']} "
                    f"remaining={row['rate_limit_remaining']} reset_at={row['rate_limit_reset_at']}"
                )
            for name, reason in skipped_providers(cfg).items():
                print(f"- {name}: omitted ({reason})")
        if args.metrics:
            m = orchestrator.metrics_snapshot()
            print("metrics:")
            print(f"- total_requests={m['total_requests']} cache_hits={m['cache_hits']} demo_responses={m['demo_responses']}")
            print(f"- provider_requests={m['provider_requests']}")
            print(f"- average_latency_ms={m['average_latency_ms']}")
    finally:
        await orchestrator.aclose()
    return rc


def main() -> int:
    parser = base_parser("chorus-diag", "Chorus orchestration diagnostics CLI")
    parser.add_argument("--validate-config", action="store_true")
    parser.add_argument("--check-providers", action="store_true", help="Probe each configured provider")
    parser.add_argument("--provider-health", action="store_true", help="Show breaker and quota state")
    parser.add_argument("--generate", default=None, metavar="PROMPT", help="Run one generation end to end")
    parser.add_argument("--persona", default="diag-persona")
    parser.add_argument("--context", default=None)
    parser.add_argument("--metrics", action="store_true")
    args = parser.parse_args()

    if args.validate_config:
        try:
            cfg = load_app_config(instance_path=args.config)
        except Exception as exc:  # noqa: BLE001
            print(f"config-invalid error={exc}")
            return 1
        print(
            f"config-valid instance={cfg.instance.name} env={cfg.environment} "
            f"cache={cfg.cache.backend if cfg.cache.enabled else 'disabled'} "
            f"threshold={cfg.runtime.failure_threshold} cool_down={cfg.runtime.cool_down_seconds}"
        )

    if not any([args.check_providers, args.provider_health, args.generate is not None, args.metrics]):
        if not args.validate_config:
            print("diag-ready (use --validate-config/--check-providers/--provider-health/--generate/--metrics)")
        return 0

    try:
        return asyncio.run(_run(args))
    except ValueError as exc:
        print(f"config-invalid error={exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
