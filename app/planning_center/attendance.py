# app/planning_center/attendance.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from app.cache.tiered import TieredCache
from app.models import AttendanceSummary, Event, EventAttendance, Group, GroupAttendance
from app.planning_center.client import MAX_PER_PAGE, PCOClient
from app.planning_center.groups import GroupDirectory
from app.planning_center.errors import PCOError
from app.stats.family import compute_family_metrics
from app.utils.common import now_utc, safe_mean, safe_percent, year_to_date_bounds_utc
from app.utils.result import BatchOutcome, Err, Ok

log = logging.getLogger(__name__)


def events_cache_key(group_id: str, include_all_history: bool) -> str:
    return f"events_{group_id}_{str(include_all_history).lower()}"


def compute_overall_stats(events: Iterable[EventAttendance], now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Lifetime-to-date stats over events that are not canceled, not in the
    future and have someone present. Unsubmitted events are left out rather
    than counted as zero.
    """
    now = now or now_utc()
    events = list(events)
    qualifying = [
        ea for ea in events
        if not ea.event.canceled
        and ea.event.starts_at <= now
        and ea.summary.present_total > 0
    ]
    n = len(qualifying)
    total_attendance = sum(ea.summary.present_total for ea in qualifying)
    total_visitors = sum(ea.summary.present_visitors for ea in qualifying)
    total_possible = sum(ea.summary.total_rostered for ea in qualifying)

    return {
        "total_events":            n,
        "events_with_attendance":  n,
        "events_listed":           len(events),
        "average_attendance":      safe_mean(total_attendance, n),
        "average_members":         safe_mean(total_possible, n),
        "average_visitors":        safe_mean(total_visitors, n),
        "overall_attendance_rate": safe_percent(total_attendance, total_possible),
    }


class AttendanceFetcher:
    """Per-group events + attendance summaries, backed by the two cache tiers."""

    def __init__(
        self,
        client: PCOClient,
        cache: TieredCache,
        directory: GroupDirectory,
        *,
        event_concurrency: int = 4,
        group_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.client = client
        self.cache = cache
        self.directory = directory
        self.event_concurrency = event_concurrency
        self.group_delay = group_delay
        self._sleep = sleep or asyncio.sleep

    # ── events ────────────────────────────────────────────────────────────────
    async def fetch_group_events(
        self,
        group_id: str,
        include_all_history: bool = False,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Event]:
        async def load() -> List[dict]:
            params: Dict[str, Any] = {"order": "-starts_at", "per_page": MAX_PER_PAGE}
            if not include_all_history:
                gte, lte = year_to_date_bounds_utc(now)
                params["where[starts_at][gte]"] = gte
                params["where[starts_at][lte]"] = lte
            page = await self.client.paginate(f"/groups/v2/groups/{group_id}/events", params)
            return page["data"]

        raw = await self.cache.get_or_load(
            events_cache_key(group_id, include_all_history), load, force_refresh=force_refresh
        )
        events: List[Event] = []
        for item in raw:
            try:
                events.append(Event.from_pco(item, group_id))
            except (KeyError, ValueError) as e:
                log.warning("[attendance] skipping malformed event in group %s: %s", group_id, e)
        return events

    # ── attendance ────────────────────────────────────────────────────────────
    async def fetch_event_attendance(self, event_id: str, force_refresh: bool = False) -> Dict[str, int]:
        async def load() -> Dict[str, int]:
            page = await self.client.paginate(
                f"/groups/v2/events/{event_id}/attendances", {"per_page": MAX_PER_PAGE}
            )
            records = page["data"]
            total = (page["meta"] or {}).get("total_count")
            present = sum(1 for a in records if (a.get("attributes") or {}).get("attended"))
            return {
                "total_count": int(total) if total is not None else len(records),
                "present_members": present,
            }

        return await self.cache.get_or_load(f"attendance_{event_id}", load, force_refresh=force_refresh)

    async def _event_attendance(self, event: Event, force_refresh: bool, sem: asyncio.Semaphore) -> EventAttendance:
        async with sem:
            try:
                att = await self.fetch_event_attendance(event.id, force_refresh)
            except PCOError as e:
                log.warning("[attendance] no data for event %s (%s): %s", event.id, e.kind, e)
                return EventAttendance(event, AttendanceSummary(event.id), error=str(e))
        return EventAttendance(
            event,
            AttendanceSummary(
                event_id=event.id,
                total_rostered=att["total_count"],
                present_members=att["present_members"],
                present_visitors=event.visitor_count,
            ),
        )

    async def fetch_group_attendance(
        self,
        group_id: str,
        include_all_history: bool = False,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
        group: Optional[Group] = None,
    ) -> GroupAttendance:
        """
        Events for the group (year-to-date unless include_all_history) with an
        attendance summary each, plus overall stats. Family groups also get a
        `family_group` block. An events-list failure propagates; a single
        event's attendance failure is recorded as no data for that event.
        """
        now = now or now_utc()
        events = await self.fetch_group_events(group_id, include_all_history, force_refresh, now)

        sem = asyncio.Semaphore(self.event_concurrency)
        rows = await asyncio.gather(*(self._event_attendance(e, force_refresh, sem) for e in events))

        overall: Dict[str, Any] = compute_overall_stats(rows, now)
        is_family = group.is_family if group is not None else await self.directory.is_family_group(group_id)
        if is_family:
            overall["family_group"] = compute_family_metrics(rows, now)

        return GroupAttendance(
            group_id=group_id,
            events=list(rows),
            overall=overall,
            group_name=group.name if group else "",
            group=group,
        )

    # ── batches ───────────────────────────────────────────────────────────────
    async def fetch_many(
        self,
        groups: List[Group],
        include_all_history: bool = False,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> BatchOutcome[GroupAttendance]:
        """
        One group at a time. A pause is inserted before any group that will go
        to the network. A failing group is recorded as Err and the batch goes on.
        """
        outcome: BatchOutcome[GroupAttendance] = BatchOutcome()
        for i, g in enumerate(groups):
            cold = force_refresh or self.cache.memory.get(events_cache_key(g.id, include_all_history)) is None
            if i and cold and self.group_delay > 0:
                await self._sleep(self.group_delay)
            try:
                ga = await self.fetch_group_attendance(g.id, include_all_history, force_refresh, now, group=g)
            except Exception as e:
                log.warning("[attendance] group %s (%s) failed: %s", g.id, g.name, e)
                outcome.add(g.id, Err(e))
            else:
                outcome.add(g.id, Ok(ga))

        log.info("[attendance] batch done groups=%d ok=%d failed=%d",
                 len(groups), outcome.success_count, outcome.error_count)
        return outcome
