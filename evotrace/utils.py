from __future__ import annotations

import time
from datetime import datetime, timedelta

from evotrace.config import DAYS_PER_WEEK


def monotonic_ms() -> int:
    """Return monotonic clock in milliseconds."""
    return int(time.monotonic() * 1000)


def parse_git_date(raw: str) -> datetime:
    """Parse an ``--date=iso-strict`` timestamp into an aware datetime."""
    value = raw.strip().strip("\"'")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp has no offset: {raw!r}")
    return parsed


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, truncated toward zero."""
    return int((end - start) / timedelta(days=1))


def weeks_between(start: datetime, end: datetime) -> float:
    return whole_days_between(start, end) / DAYS_PER_WEEK


def truncated_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient
