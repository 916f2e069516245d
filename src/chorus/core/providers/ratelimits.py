from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

from chorus.core.runtime.errors import RateLimitSignal

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_MAX_RESET_AT = datetime.max.replace(tzinfo=timezone.utc)


def _seconds(total: float) -> timedelta | None:
    if not math.isfinite(total) or total < 0:
        return None
    try:
        return timedelta(seconds=total)
    except OverflowError:
        return None


def _offset(now: datetime, delta: timedelta) -> datetime:
    try:
        return now + delta
    except OverflowError:
        return _MAX_RESET_AT


def parse_duration(value: str) -> timedelta | None:
    """Parse OpenAI-style reset durations such as ``6m0s``, ``1.5s`` or ``250ms``."""
    text = (value or "").strip()
    if not text:
        return None
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            return None
        amount = float(m.group(1))
        unit = m.group(2)
        total += {"ms": amount / 1000, "s": amount, "m": amount * 60, "h": amount * 3600}[unit]
        pos = m.end()
    if pos != len(text):
        try:
            return _seconds(float(text))
        except ValueError:
            return None
    return _seconds(total)


def parse_timestamp(value: str) -> datetime | None:
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _int_header(headers: Mapping[str, str], key: str) -> int | None:
    raw = headers.get(key)
    if raw is None:
        return None
    try:
        return max(0, int(float(raw)))
    except (ValueError, OverflowError):
        return None


def signal_from_headers(
    headers: Mapping[str, str],
    *,
    remaining_header: str,
    reset_header: str,
    now: datetime,
    reset_is_duration: bool,
) -> RateLimitSignal | None:
    remaining = _int_header(headers, remaining_header)
    if remaining is None:
        return None
    raw_reset = headers.get(reset_header, "")
    if reset_is_duration:
        delta = parse_duration(raw_reset)
        reset_at = _offset(now, delta) if delta is not None else None
    else:
        reset_at = parse_timestamp(raw_reset)
    if reset_at is None:
        return None
    return RateLimitSignal(remaining=remaining, reset_at=reset_at)


def signal_from_retry_after(headers: Mapping[str, str], *, now: datetime, default_seconds: float = 60) -> RateLimitSignal:
    delta = parse_duration(headers.get("retry-after", ""))
    if delta is None:
        delta = timedelta(seconds=default_seconds)
    return RateLimitSignal(remaining=0, reset_at=_offset(now, delta))
