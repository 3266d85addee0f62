from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, Date, DateTime, Integer, String, Text, UniqueConstraint

from app.db import Base
from app.utils.common import round_half_up


# ─────────────────────────────────────────────────────────────────────────────
# Tables
# ─────────────────────────────────────────────────────────────────────────────
class CacheEntryRow(Base):
    __tablename__ = "cache_entries"
    key        = Column(String, primary_key=True, index=True)
    value      = Column(Text, nullable=False)  # JSON text
    updated_at = Column(DateTime, nullable=False, index=True)  # naive UTC


class MembershipSnapshotRow(Base):
    __tablename__ = "membership_snapshots"
    __table_args__ = (
        UniqueConstraint("snapshot_date", "group_id", "person_id", name="uq_snapshot_date_group_person"),
    )
    id            = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_date = Column(Date, nullable=False, index=True)
    group_id      = Column(String, nullable=False, index=True)
    group_name    = Column(String, nullable=False, default="")
    person_id     = Column(String, nullable=False)
    first_name    = Column(String, nullable=False, default="")
    last_name     = Column(String, nullable=False, default="")
    role          = Column(String, nullable=False, default="member")
    created_at    = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))


# ─────────────────────────────────────────────────────────────────────────────
# Domain records
# ─────────────────────────────────────────────────────────────────────────────
def parse_pco_datetime(val: Optional[str]) -> Optional[datetime]:
    """PCO timestamps are ISO8601 with Z; return an aware UTC datetime."""
    if not val:
        return None
    try:
        dt = datetime.fromisoformat(val.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Event:
    id: str
    group_id: str
    name: str
    starts_at: datetime
    canceled: bool = False
    visitor_count: int = 0

    @classmethod
    def from_pco(cls, item: Dict[str, Any], group_id: str) -> "Event":
        attrs = item.get("attributes") or {}
        starts = parse_pco_datetime(attrs.get("starts_at"))
        if starts is None:
            raise ValueError(f"event {item.get('id')} has no starts_at")
        return cls(
            id=str(item["id"]),
            group_id=str(group_id),
            name=attrs.get("name") or "",
            starts_at=starts,
            canceled=bool(attrs.get("canceled")),
            visitor_count=int(attrs.get("visitors_count") or 0),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "date": self.starts_at.isoformat().replace("+00:00", "Z"),
            "canceled": self.canceled,
        }


@dataclass(frozen=True)
class AttendanceSummary:
    event_id: str
    total_rostered: int = 0
    present_members: int = 0
    present_visitors: int = 0

    @property
    def present_total(self) -> int:
        return self.present_members + self.present_visitors

    @property
    def absent_count(self) -> int:
        return self.total_rostered - self.present_members

    @property
    def attendance_rate(self) -> int:
        if self.total_rostered <= 0:
            return 0
        return round_half_up(self.present_members / self.total_rostered * 100)

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_count":      self.total_rostered,
            "present_count":    self.present_total,
            "present_members":  self.present_members,
            "present_visitors": self.present_visitors,
            "absent_count":     self.absent_count,
            "attendance_rate":  self.attendance_rate,
        }


@dataclass(frozen=True)
class EventAttendance:
    event: Event
    summary: AttendanceSummary
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "event": self.event.as_dict(),
            "attendance_summary": self.summary.as_dict(),
        }
        if self.error:
            out["error"] = self.error
        return out


GROUP_TYPE_TAGS = ("Family", "Stage of Life", "Location Based")
MEETING_DAY_TAGS = ("Wednesday", "Thursday")


@dataclass(frozen=True)
class Group:
    id: str
    name: str
    tags: Dict[str, str] = field(default_factory=dict)  # tag id -> tag name
    is_family: bool = False

    @property
    def group_type_label(self) -> str:
        for name in self.tags.values():
            if name in GROUP_TYPE_TAGS:
                return name
        return "Unknown"

    @property
    def meeting_day(self) -> str:
        for name in self.tags.values():
            if name in MEETING_DAY_TAGS:
                return name
        return "Unknown"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_family_group": self.is_family,
            "metadata": {
                "group_type": self.group_type_label,
                "meeting_day": self.meeting_day,
                "all_tags": [{"id": k, "name": v} for k, v in self.tags.items()],
            },
        }


@dataclass
class GroupAttendance:
    group_id: str
    events: List[EventAttendance]
    overall: Dict[str, Any]
    group_name: str = ""
    group: Optional[Group] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "overall_statistics": self.overall,
            "events": [e.as_dict() for e in self.events],
        }


@dataclass(frozen=True)
class RosterMember:
    person_id: str
    first_name: str = ""
    last_name: str = ""
    role: str = "member"


def half_roster(total_rostered: int) -> int:
    """Parents nights expect half the roster (the other parent comes to the paired night)."""
    return math.ceil(total_rostered / 2)
