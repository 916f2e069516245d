from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class InstanceConfig(BaseModel):
    name: str = "chorus"


class RuntimeConfig(BaseModel):
    failure_threshold: int = Field(default=3, ge=1)
    cool_down_seconds: float = Field(default=60, ge=0)
    provider_timeout_seconds: float = Field(default=8, gt=0)
    cache_ttl_seconds: float = Field(default=3600, gt=0)


class CacheConfig(BaseModel):
    enabled: bool = True
    backend: Literal["memory", "redis"] = "memory"
    max_entries: int = Field(default=1000, ge=1)
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "chorus:response:"


class DemoConfig(BaseModel):
    max_chars: int = Field(default=280, ge=16)


class TelemetryConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = True


class ProviderConfig(BaseModel):
    enabled: bool = True
    priority: int = 100
    api_key_env: str | None = None
    base_url: str | None = None
    model: str | None = None


class ProvidersConfig(BaseModel):
    anthropic: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(priority=1, api_key_env="ANTHROPIC_API_KEY")
    )
    openai: ProviderConfig = Field(default_factory=lambda: ProviderConfig(priority=2, api_key_env="OPENAI_API_KEY"))
    gemini: ProviderConfig = Field(default_factory=lambda: ProviderConfig(priority=3, api_key_env="GEMINI_API_KEY"))


class AdminConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8088
    token_env: str = "CHORUS_ADMIN_TOKEN"


class AppConfig(BaseModel):
    instance: InstanceConfig = Field(default_factory=InstanceConfig)
    environment: str = "dev"
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    demo: DemoConfig = Field(default_factory=DemoConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
