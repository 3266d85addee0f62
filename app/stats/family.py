# app/stats/family.py
"""
Family Group metrics.

Family groups meet three times a month and the meetings are identified by
their position inside the month, not by weekday:

    1st event  -> Mothers Night   (half the roster expected)
    2nd event  -> Fathers Night   (half the roster expected)
    3rd event  -> Family Night    (full roster expected)

Canceled / unsubmitted events still occupy their position; they just don't
contribute a rate. Anything past the 3rd event in a month is uncategorized.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from app.models import EventAttendance, half_roster
from app.utils.common import month_key, now_utc, safe_mean

MOTHERS, FATHERS, FAMILY = 0, 1, 2


def _is_valid(ea: EventAttendance) -> bool:
    return not ea.event.canceled and ea.summary.present_total > 0


def _parents_night_rate(ea: EventAttendance) -> float:
    expected = half_roster(ea.summary.total_rostered)
    if expected <= 0:
        return 0.0
    return ea.summary.present_members / expected * 100


def events_by_month(events: Iterable[EventAttendance], now: Optional[datetime] = None) -> Dict[str, List[EventAttendance]]:
    """Past events (canceled included) grouped by YYYY-MM, chronological within each month."""
    now = now or now_utc()
    months: Dict[str, List[EventAttendance]] = defaultdict(list)
    for ea in events:
        if ea.event.starts_at <= now:
            months[month_key(ea.event.starts_at)].append(ea)
    for month_events in months.values():
        month_events.sort(key=lambda ea: ea.event.starts_at)
    return dict(months)


def compute_family_metrics(events: Iterable[EventAttendance], now: Optional[datetime] = None) -> dict:
    months = events_by_month(events, now)

    parents_rate_total = 0.0
    family_rate_total = 0.0
    months_with_parents = 0
    months_with_family = 0

    parents_attendance_total = 0
    family_attendance_total = 0
    parents_events = 0
    family_events = 0

    position_counts = [0, 0, 0]

    for month_events in months.values():
        parents_rates: List[float] = []
        family_rate: Optional[int] = None

        for position, ea in enumerate(month_events[:3]):
            position_counts[position] += 1
            if not _is_valid(ea):
                continue
            if position in (MOTHERS, FATHERS):
                parents_rates.append(_parents_night_rate(ea))
                parents_attendance_total += ea.summary.present_members
                parents_events += 1
            else:
                family_rate = ea.summary.attendance_rate
                family_attendance_total += ea.summary.present_members
                family_events += 1

        if parents_rates:
            parents_rate_total += sum(parents_rates) / len(parents_rates)
            months_with_parents += 1
        if family_rate is not None:
            family_rate_total += family_rate
            months_with_family += 1

    return {
        "parents_nights_rate": safe_mean(parents_rate_total, months_with_parents),
        "family_nights_rate": safe_mean(family_rate_total, months_with_family),
        "parents_nights_attendance": safe_mean(parents_attendance_total, parents_events),
        "family_nights_attendance": safe_mean(family_attendance_total, family_events),
        "events_breakdown": {
            "total_months": len(months),
            "months_with_parents_data": months_with_parents,
            "months_with_family_data": months_with_family,
            "mothers_nights_count": position_counts[MOTHERS],
            "fathers_nights_count": position_counts[FATHERS],
            "family_nights_count": position_counts[FAMILY],
        },
    }
