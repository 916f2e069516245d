from __future__ import annotations

import threading
from collections import Counter

from chorus.core.providers.base import DEMO_PROVIDER


class MetricsAccumulator:
    """Process-wide counters, updated once per completed ``generate`` call."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_requests = 0
        self._cache_hits = 0
        self._demo_responses = 0
        self._provider_requests: Counter[str] = Counter()
        self._total_latency_ms = 0.0

    def record(self, provider_name: str, latency_ms: float, *, cache_hit: bool = False) -> None:
        with self._lock:
            self._total_requests += 1
            self._total_latency_ms += max(0.0, latency_ms)
            if cache_hit:
                self._cache_hits += 1
                return
            self._provider_requests[provider_name] += 1
            if provider_name == DEMO_PROVIDER:
                self._demo_responses += 1

    def snapshot(self) -> dict:
        with self._lock:
            avg = self._total_latency_ms / self._total_requests if self._total_requests else 0.0
            return {
                "total_requests": self._total_requests,
                "cache_hits": self._cache_hits,
                "demo_responses": self._demo_responses,
                "provider_requests": dict(self._provider_requests),
                "total_latency_ms": round(self._total_latency_ms, 3),
                "average_latency_ms": round(avg, 3),
            }
