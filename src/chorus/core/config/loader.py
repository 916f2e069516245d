from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from chorus.core.config.schema import AppConfig

# env var -> dotted path in the merged config
ENV_OVERRIDES: dict[str, str] = {
    "CHORUS_ENVIRONMENT": "environment",
    "CHORUS_LOG_LEVEL": "telemetry.log_level",
    "CHORUS_CACHE_BACKEND": "cache.backend",
    "CHORUS_REDIS_URL": "cache.redis_url",
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    content = yaml.safe_load(path.read_text(encoding="utf-8"))
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return content


def _env_layer() -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for env_name, dotted in ENV_OVERRIDES.items():
        value = os.getenv(env_name, "").strip()
        if not value:
            continue
        *parents, leaf = dotted.split(".")
        node = layer
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return layer


def load_app_config(
    defaults_path: str | Path = "config/defaults.yaml",
    instance_path: str | Path | None = None,
) -> AppConfig:
    """Defaults, then the instance file, then ``CHORUS_*`` env vars."""
    defaults = _load_yaml(Path(defaults_path))

    explicit_instance = instance_path or os.getenv("CHORUS_CONFIG_FILE")
    instance = _load_yaml(Path(explicit_instance)) if explicit_instance else {}

    merged = _deep_merge(_deep_merge(defaults, instance), _env_layer())

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid Chorus configuration: {exc}") from exc
