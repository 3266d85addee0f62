# app/membership/snapshots.py
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import anyio
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from app.db import make_session_factory
from app.models import Group, MembershipSnapshotRow, RosterMember
from app.utils.result import BatchOutcome, Err, Ok

if TYPE_CHECKING:
    from app.planning_center.groups import GroupDirectory

log = logging.getLogger(__name__)

JOIN = "join"
LEAVE = "leave"


@dataclass(frozen=True)
class Snapshot:
    snapshot_date: date
    group_id: str
    group_name: str
    person_id: str
    first_name: str = ""
    last_name: str = ""
    role: str = "member"


@dataclass(frozen=True)
class MembershipChange:
    person_id: str
    first_name: str
    last_name: str
    group_id: str
    group_name: str
    type: str
    date: date

    def as_dict(self) -> dict:
        return {
            "person_id": self.person_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "type": self.type,
            "date": self.date.isoformat(),
        }


def _change(s: Snapshot, kind: str, on: date) -> MembershipChange:
    return MembershipChange(s.person_id, s.first_name, s.last_name, s.group_id, s.group_name, kind, on)


def _sort_changes(changes: List[MembershipChange]) -> List[MembershipChange]:
    return sorted(changes, key=lambda c: (c.group_name, -c.date.toordinal(), c.first_name))


def diff_snapshots(rows: Iterable[Snapshot]) -> Dict[str, List[MembershipChange]]:
    """
    Walk each group's captured dates in order and compare each date with the
    one captured immediately before it. Someone only in the later roster
    joined on the later date; someone only in the earlier roster left on it.
    A skipped capture day is invisible: a join + leave inside the gap never shows.
    """
    by_group: Dict[str, Dict[date, Dict[str, Snapshot]]] = defaultdict(lambda: defaultdict(dict))
    for s in rows:
        by_group[s.group_id][s.snapshot_date][s.person_id] = s

    joins: List[MembershipChange] = []
    leaves: List[MembershipChange] = []
    for by_date in by_group.values():
        dates = sorted(by_date)
        for prev, cur in zip(dates, dates[1:]):
            before, after = by_date[prev], by_date[cur]
            for pid in after.keys() - before.keys():
                joins.append(_change(after[pid], JOIN, cur))
            for pid in before.keys() - after.keys():
                leaves.append(_change(before[pid], LEAVE, cur))

    return {"joins": _sort_changes(joins), "leaves": _sort_changes(leaves)}


class SnapshotStore:
    """Daily per-group roster snapshots; a capture replaces that (date, group) wholesale."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._Session = make_session_factory(engine)

    def _capture_sync(self, snapshot_date: date, group_id: str, group_name: str, roster: List[RosterMember]) -> int:
        unique: Dict[str, RosterMember] = {}
        for m in roster:
            unique[m.person_id] = m  # last one wins; (date, group, person) is unique

        with self._Session() as s:
            s.execute(
                delete(MembershipSnapshotRow).where(
                    MembershipSnapshotRow.snapshot_date == snapshot_date,
                    MembershipSnapshotRow.group_id == group_id,
                )
            )
            s.add_all([
                MembershipSnapshotRow(
                    snapshot_date=snapshot_date,
                    group_id=group_id,
                    group_name=group_name,
                    person_id=m.person_id,
                    first_name=m.first_name,
                    last_name=m.last_name,
                    role=m.role,
                )
                for m in unique.values()
            ])
            s.commit()
        return len(unique)

    def _rows_since_sync(self, cutoff: date) -> List[Snapshot]:
        with self._Session() as s:
            rows = s.execute(
                select(MembershipSnapshotRow)
                .where(MembershipSnapshotRow.snapshot_date >= cutoff)
                .order_by(MembershipSnapshotRow.group_id, MembershipSnapshotRow.snapshot_date)
            ).scalars().all()
        return [
            Snapshot(
                snapshot_date=r.snapshot_date,
                group_id=r.group_id,
                group_name=r.group_name,
                person_id=r.person_id,
                first_name=r.first_name,
                last_name=r.last_name,
                role=r.role,
            )
            for r in rows
        ]

    async def capture(self, snapshot_date: date, group_id: str, group_name: str, roster: List[RosterMember]) -> int:
        n = await anyio.to_thread.run_sync(self._capture_sync, snapshot_date, group_id, group_name, roster)
        log.info("[snapshots] %s group=%s members=%d", snapshot_date, group_id, n)
        return n

    async def capture_groups(
        self,
        groups: List[Group],
        directory: "GroupDirectory",
        today: Optional[date] = None,
        *,
        group_delay: float = 0.0,
    ) -> BatchOutcome[int]:
        """Capture today's roster for each group, one group at a time."""
        today = today or date.today()
        outcome: BatchOutcome[int] = BatchOutcome()
        for i, g in enumerate(groups):
            if i and group_delay > 0:
                await asyncio.sleep(group_delay)
            try:
                roster = await directory.fetch_memberships(g.id, force_refresh=True)
                n = await self.capture(today, g.id, g.name, roster)
            except Exception as e:
                log.warning("[snapshots] capture failed for group %s: %s", g.id, e)
                outcome.add(g.id, Err(e))
            else:
                outcome.add(g.id, Ok(n))
        return outcome

    async def rows_since(self, cutoff: date) -> List[Snapshot]:
        return await anyio.to_thread.run_sync(self._rows_since_sync, cutoff)

    async def diff(self, days_back: int, today: Optional[date] = None) -> Dict[str, List[MembershipChange]]:
        today = today or date.today()
        cutoff = today - timedelta(days=days_back)
        return diff_snapshots(await self.rows_since(cutoff))
