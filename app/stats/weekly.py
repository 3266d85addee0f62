# app/stats/weekly.py
"""
Weekly attendance series across groups.

Every Wednesday/Thursday event is bucketed under the Wednesday of its week
(see `wednesday_of_week`). Per week we track who was scheduled, who
cancelled and who actually turned in attendance, so the report can tell
"missing data" apart from "cancelled".
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.models import EventAttendance, GroupAttendance
from app.utils.common import is_meeting_day, now_utc, safe_percent, wednesday_of_week

MIN_GROUPS_UNFILTERED = 5
MIN_GROUPS_FILTERED = 1
ROSTER_LOOKBACK = timedelta(days=120)  # ~4 months


@dataclass(frozen=True)
class WeeklyFilters:
    group_type: Optional[str] = None
    meeting_day: Optional[str] = None
    group_ids: Optional[frozenset] = None

    @property
    def is_explicit(self) -> bool:
        return bool(self.group_type or self.meeting_day or self.group_ids)

    @property
    def min_groups(self) -> int:
        return MIN_GROUPS_FILTERED if self.is_explicit else MIN_GROUPS_UNFILTERED

    def matches(self, ga: GroupAttendance) -> bool:
        if self.group_ids and ga.group_id not in self.group_ids:
            return False
        if self.group_type and (ga.group is None or ga.group.group_type_label != self.group_type):
            return False
        if self.meeting_day and (ga.group is None or ga.group.meeting_day != self.meeting_day):
            return False
        return True


@dataclass
class WeekBucket:
    week: date
    total_present: int = 0
    total_visitors: int = 0
    groups_with_data: Set[str] = field(default_factory=set)
    groups_scheduled: Set[str] = field(default_factory=set)
    groups_cancelled: Set[str] = field(default_factory=set)
    days: Set[int] = field(default_factory=set)

    @property
    def groups_missing_data(self) -> Set[str]:
        return self.groups_scheduled - self.groups_cancelled - self.groups_with_data


@dataclass(frozen=True)
class WeekStats:
    date: date
    total_present: int
    total_visitors: int
    total_members: int
    groups_with_data: int
    groups_scheduled: int
    groups_cancelled: int
    groups_missing_data: Tuple[str, ...]
    days_included: int

    @property
    def total_with_visitors(self) -> int:
        return self.total_present + self.total_visitors

    @property
    def attendance_rate(self) -> int:
        return safe_percent(self.total_present, self.total_members)

    @property
    def is_perfect_week(self) -> bool:
        return not self.groups_missing_data and self.groups_scheduled > 0

    def as_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "total_present": self.total_present,
            "total_visitors": self.total_visitors,
            "total_with_visitors": self.total_with_visitors,
            "total_members": self.total_members,
            "attendance_rate": self.attendance_rate,
            "groups_with_data": self.groups_with_data,
            "groups_scheduled": self.groups_scheduled,
            "groups_cancelled": self.groups_cancelled,
            "groups_missing_data": list(self.groups_missing_data),
            "is_perfect_week": self.is_perfect_week,
            "days_included": self.days_included,
        }


def _event_day(ea: EventAttendance) -> date:
    return ea.event.starts_at.date()


def is_submitted(ea: EventAttendance, yesterday: date) -> bool:
    """Someone is marked present, or the event is old enough that a zero is real."""
    return ea.summary.present_total > 0 or _event_day(ea) <= yesterday


def bucket_events(groups: Iterable[GroupAttendance], now: Optional[datetime] = None) -> Dict[date, WeekBucket]:
    """Accumulate present members / visitors per week, each group at most once per week."""
    now = now or now_utc()
    yesterday = (now - timedelta(days=1)).date()
    buckets: Dict[date, WeekBucket] = {}

    for ga in groups:
        counted: Dict[date, List[EventAttendance]] = defaultdict(list)
        for ea in ga.events:
            d = _event_day(ea)
            if not is_meeting_day(d):
                continue
            week = wednesday_of_week(d)
            bucket = buckets.setdefault(week, WeekBucket(week))
            bucket.groups_scheduled.add(ga.group_id)
            if ea.event.canceled:
                bucket.groups_cancelled.add(ga.group_id)
                continue
            if is_submitted(ea, yesterday):
                counted[week].append(ea)

        for week, evs in counted.items():
            # one contribution per group per week: an event with people present wins, earliest first
            chosen = min(evs, key=lambda ea: (ea.summary.present_total == 0, ea.event.starts_at, ea.event.id))
            bucket = buckets[week]
            bucket.total_present += chosen.summary.present_members
            bucket.total_visitors += chosen.summary.present_visitors
            bucket.days.add(_event_day(chosen).weekday())
            if chosen.summary.present_total > 0:
                bucket.groups_with_data.add(ga.group_id)

    return buckets


def roster_for_week(events: List[EventAttendance], week: date) -> int:
    """
    Rostered members for one group in one week: the largest roster among its
    non-canceled events in that week, else the nearest earlier qualifying
    event within the lookback window, else 0.
    """
    in_week = [
        ea.summary.total_rostered
        for ea in events
        if not ea.event.canceled
        and is_meeting_day(_event_day(ea))
        and wednesday_of_week(_event_day(ea)) == week
    ]
    if in_week and max(in_week) > 0:
        return max(in_week)

    earliest = week - ROSTER_LOOKBACK
    prior = [
        ea for ea in events
        if not ea.event.canceled
        and ea.summary.present_total > 0
        and earliest <= _event_day(ea) < week
    ]
    if not prior:
        return 0
    nearest = max(prior, key=lambda ea: ea.event.starts_at)
    return nearest.summary.total_rostered


def aggregate(
    groups: Iterable[GroupAttendance],
    filters: Optional[WeeklyFilters] = None,
    now: Optional[datetime] = None,
) -> List[WeekStats]:
    """Ordered weekly series for the groups that pass `filters`."""
    filters = filters or WeeklyFilters()
    now = now or now_utc()
    selected = [ga for ga in groups if filters.matches(ga)]
    buckets = bucket_events(selected, now)

    out: List[WeekStats] = []
    for week in sorted(buckets):
        bucket = buckets[week]
        if len(bucket.groups_with_data) < filters.min_groups:
            continue
        total_members = sum(roster_for_week(ga.events, week) for ga in selected)
        if total_members == 0 and bucket.total_present == 0:
            continue
        out.append(WeekStats(
            date=week,
            total_present=bucket.total_present,
            total_visitors=bucket.total_visitors,
            total_members=total_members,
            groups_with_data=len(bucket.groups_with_data),
            groups_scheduled=len(bucket.groups_scheduled),
            groups_cancelled=len(bucket.groups_cancelled),
            groups_missing_data=tuple(sorted(bucket.groups_missing_data)),
            days_included=len(bucket.days),
        ))
    return out


def week_breakdown(groups: Iterable[GroupAttendance], day: date) -> dict:
    """Per-group events in the Wednesday-anchored week containing `day` (canceled left out)."""
    week = wednesday_of_week(day)
    groups = list(groups)
    breakdown = []
    total_members = 0
    for ga in groups:
        week_events = sorted(
            (ea for ea in ga.events
             if not ea.event.canceled and wednesday_of_week(_event_day(ea)) == week),
            key=lambda ea: ea.event.starts_at,
        )
        if not week_events:
            continue
        total_members += max(ea.summary.total_rostered for ea in week_events)
        breakdown.append({
            "group_id": ga.group_id,
            "group_name": ga.group_name,
            "week_events": [
                {
                    "date": ea.event.as_dict()["date"],
                    "total_members": ea.summary.total_rostered,
                    "present_members": ea.summary.present_members,
                    "visitors": ea.summary.present_visitors,
                }
                for ea in week_events
            ],
        })
    return {
        "requested_date": day.isoformat(),
        "week": week.isoformat(),
        "total_groups": len(groups),
        "groups_with_data": len(breakdown),
        "total_members": total_members,
        "group_breakdown": breakdown,
    }
