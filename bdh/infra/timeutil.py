"""Best-effort timestamp parsing and compact human durations."""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta

_EXTRA_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp; None when empty, malformed, or naive."""
    if not value:
        return None
    # Server timestamps may carry nanoseconds; datetime keeps microseconds.
    candidate = _EXTRA_FRACTION_RE.sub(r"\1", value.strip())
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def ttl_remaining_seconds(expires_at: str | None, now: datetime) -> int:
    expires = parse_timestamp(expires_at)
    if expires is None:
        return 0
    return max(0, math.ceil((expires - now).total_seconds()))


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        minutes, secs = divmod(seconds, 60)
        return f"{minutes}m" if secs == 0 else f"{minutes}m{secs}s"
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    return f"{hours}h" if minutes == 0 else f"{hours}h{minutes}m"


def format_time_ago(timestamp: str, now: datetime) -> str:
    """Render "<n>s/m/h/d ago"; unparseable input is returned unchanged."""
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return timestamp
    secs = max(0, int((now - parsed).total_seconds()))
    if secs < 60:
        return f"{secs}s ago"
    minutes = secs // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 48:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def is_older_than(timestamp: str, now: datetime, age: timedelta) -> bool:
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return False
    return now - parsed > age
