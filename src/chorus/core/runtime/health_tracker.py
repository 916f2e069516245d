from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

CLOSED = "closed"
OPEN = "open"
RATE_LIMITED = "rate_limited"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ProviderHealthState:
    consecutive_failures: int = 0
    circuit_open_until: datetime | None = None
    rate_limit_remaining: int | None = None
    rate_limit_reset_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class ProviderHealthTracker:
    """Single source of truth for whether a provider may be called right now.

    Two independent axes are checked together: the circuit breaker (opened after
    ``failure_threshold`` consecutive failures, for ``cool_down_seconds``) and the
    provider-reported request quota.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        cool_down_seconds: float = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.cool_down = timedelta(seconds=max(0.0, cool_down_seconds))
        self._clock = clock
        self._states: dict[str, ProviderHealthState] = {}
        self._registry_lock = threading.Lock()

    def _state(self, name: str) -> ProviderHealthState:
        with self._registry_lock:
            if name not in self._states:
                self._states[name] = ProviderHealthState()
            return self._states[name]

    @staticmethod
    def _circuit_open(st: ProviderHealthState, now: datetime) -> bool:
        return st.circuit_open_until is not None and now < st.circuit_open_until

    @staticmethod
    def _quota_exhausted(st: ProviderHealthState, now: datetime) -> bool:
        if st.rate_limit_remaining is None or st.rate_limit_remaining > 0:
            return False
        return st.rate_limit_reset_at is None or now < st.rate_limit_reset_at

    def may_attempt(self, name: str) -> bool:
        st = self._state(name)
        with st.lock:
            now = self._clock()
            return not self._circuit_open(st, now) and not self._quota_exhausted(st, now)

    def record_failure(self, name: str) -> bool:
        """Returns True when this failure opened the circuit."""
        st = self._state(name)
        with st.lock:
            st.consecutive_failures += 1
            if st.consecutive_failures < self.failure_threshold:
                return False
            st.circuit_open_until = self._clock() + self.cool_down
            st.consecutive_failures = 0
            return True

    def record_success(self, name: str) -> None:
        st = self._state(name)
        with st.lock:
            st.consecutive_failures = 0

    def record_rate_limit_signal(self, name: str, remaining: int, reset_at: datetime) -> None:
        st = self._state(name)
        with st.lock:
            st.rate_limit_remaining = remaining
            st.rate_limit_reset_at = reset_at

    def _classify_locked(self, st: ProviderHealthState) -> str:
        now = self._clock()
        if self._circuit_open(st, now):
            return OPEN
        if self._quota_exhausted(st, now):
            return RATE_LIMITED
        return CLOSED

    def classify(self, name: str) -> str:
        st = self._state(name)
        with st.lock:
            return self._classify_locked(st)

    def snapshot(self, name: str) -> dict:
        st = self._state(name)
        with st.lock:
            return {
                "state": self._classify_locked(st),
                "consecutive_failures": st.consecutive_failures,
                "circuit_open_until": st.circuit_open_until.isoformat() if st.circuit_open_until else None,
                "rate_limit_remaining": st.rate_limit_remaining,
                "rate_limit_reset_at": st.rate_limit_reset_at.isoformat() if st.rate_limit_reset_at else None,
            }

    def snapshot_all(self) -> dict[str, dict]:
        with self._registry_lock:
            names = list(self._states)
        return {name: self.snapshot(name) for name in names}

    def reset(self, name: str | None = None) -> None:
        with self._registry_lock:
            names = [name] if name is not None else list(self._states)
        for n in names:
            st = self._state(n)
            with st.lock:
                st.consecutive_failures = 0
                st.circuit_open_until = None
