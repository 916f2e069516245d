from __future__ import annotations

import json

import redis.asyncio as aioredis

from chorus.core.cache.response_cache import ResponseCache
from chorus.core.providers.base import GenerationResult


class RedisResponseCache(ResponseCache):
    """Response cache backed by Redis; expiry is delegated to ``SET ... EX``."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = "chorus:response:",
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self.key_prefix = key_prefix
        self._client = client

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=False)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> GenerationResult | None:
        raw = await self._get_client().get(self._key(key))
        if raw is None:
            return None
        return GenerationResult.from_dict(json.loads(raw))

    async def put(self, key: str, value: GenerationResult, ttl_seconds: float) -> None:
        encoded = json.dumps(value.to_dict()).encode("utf-8")
        await self._get_client().set(self._key(key), encoded, ex=max(1, int(ttl_seconds)))

    async def clear(self) -> None:
        client = self._get_client()
        keys = [k async for k in client.scan_iter(match=f"{self.key_prefix}*")]
        if keys:
            await client.delete(*keys)

    def stats(self) -> dict:
        return {"backend": "redis", "key_prefix": self.key_prefix}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
