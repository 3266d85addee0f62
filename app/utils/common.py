from __future__ import annotations
from datetime import datetime, date, timedelta, timezone
from typing import Optional, Tuple
import math

# ─────────────────────────────
# Time & Date helpers
# ─────────────────────────────
# Meetings happen on Wednesday / Thursday (Monday=0)
WEDNESDAY = 2
THURSDAY = 3


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def year_to_date_bounds_utc(now: Optional[datetime] = None) -> Tuple[str, str]:
    """Jan 1 00:00 UTC of the current year .. end of today UTC (inclusive), ISO strings."""
    now = as_utc(now or now_utc())
    start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
    end = datetime(now.year, now.month, now.day, 23, 59, 59, 999000, tzinfo=timezone.utc)
    fmt = "%Y-%m-%dT%H:%M:%S.%f"
    return start.strftime(fmt)[:-3] + "Z", end.strftime(fmt)[:-3] + "Z"


def wednesday_of_week(d: date) -> date:
    """
    Canonical week anchor. Sun..Tue map to the previous Wednesday,
    Wed..Sat map to this week's Wednesday. Idempotent.
    """
    if isinstance(d, datetime):
        d = as_utc(d).date()
    # days since the most recent Wednesday (Wed=0 .. Tue=6)
    return d - timedelta(days=(d.weekday() - WEDNESDAY) % 7)


def is_meeting_day(d: date) -> bool:
    return d.weekday() in (WEDNESDAY, THURSDAY)


def month_key(dt: datetime) -> str:
    return f"{dt.year}-{dt.month:02d}"


def parse_iso_date(raw: str) -> date:
    """YYYY-MM-DD -> date; raises ValueError on anything else."""
    return datetime.strptime(raw, "%Y-%m-%d").date()


# ─────────────────────────────
# Math / display helpers
# ─────────────────────────────
def round_half_up(x: float) -> int:
    """Report rounding (0.5 rounds away from zero), not Python's banker's rounding."""
    if x < 0:
        return -math.floor(-x + 0.5)
    return math.floor(x + 0.5)


def safe_percent(numer: float, denom: float) -> int:
    if not denom:
        return 0
    return round_half_up((numer / denom) * 100.0)


def safe_mean(total: float, count: int) -> int:
    if not count:
        return 0
    return round_half_up(total / count)
