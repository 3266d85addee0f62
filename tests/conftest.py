"""
Pytest configuration and shared fixtures.
"""
import asyncio
from collections import Counter
from datetime import datetime, timezone

import httpx
import pytest

from app.config import Settings
from app.models import AttendanceSummary, Event, EventAttendance, Group, GroupAttendance
from app.services import build_services

UTC = timezone.utc


def utc(raw: str) -> datetime:
    return datetime.fromisoformat(raw).replace(tzinfo=UTC)


class FakePCO:
    """In-memory stand-in for the Planning Center Groups / People APIs (served through httpx.MockTransport)."""

    def __init__(self):
        self.groups = []         # (id, name, group_type_id)
        self.events = {}         # group_id -> [event json]
        self.attendances = {}    # event_id -> (total_count, present)
        self.tags = {}           # group_id -> [(tag_id, name)]
        self.memberships = {}    # group_id -> [(person_id, first, last, role)]
        self.missing = set()     # paths answering 404
        self.calls = Counter()
        self.workflows = []      # (id, name, category_id)
        self.cards = {}          # workflow_id -> [(card_id, person_id, first, last, stage)]
        self.attendance_delay = 0.0  # seconds each attendances call takes

    # ── seeding ───────────────────────────────────────────────────────────────
    def add_group(self, gid, name, type_id="429361", tags=()):
        self.groups.append((gid, name, type_id))
        self.tags[gid] = list(tags)
        self.events.setdefault(gid, [])

    def add_event(self, gid, eid, starts_at, *, canceled=False, visitors=0, total=10, present=0):
        self.events.setdefault(gid, []).append({
            "type": "Event",
            "id": eid,
            "attributes": {
                "name": f"Meeting {eid}",
                "starts_at": starts_at,
                "canceled": canceled,
                "visitors_count": visitors,
            },
        })
        self.attendances[eid] = (total, present)

    # ── transport ─────────────────────────────────────────────────────────────
    def _page(self, data, included=None):
        return httpx.Response(200, json={"data": data, "included": included or [], "meta": {"total_count": len(data)}})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        if path in self.missing:
            return httpx.Response(404, json={"errors": [{"status": "404"}]})

        if path == "/groups/v2/groups":
            return self._page([
                {
                    "type": "Group",
                    "id": gid,
                    "attributes": {"name": name, "archived_at": None},
                    "relationships": {"group_type": {"data": {"type": "GroupType", "id": type_id}}},
                }
                for gid, name, type_id in self.groups
            ])

        parts = path.strip("/").split("/")
        if len(parts) == 4 and parts[2] == "groups":
            for gid, name, _type_id in self.groups:
                if gid == parts[3]:
                    return httpx.Response(200, json={"data": {"type": "Group", "id": gid, "attributes": {"name": name}}})
            return httpx.Response(404, json={"errors": [{"status": "404"}]})

        if path == "/people/v2/workflows":
            category = request.url.params.get("where[workflow_category_id]")
            return self._page([
                {
                    "type": "Workflow",
                    "id": wid,
                    "attributes": {"name": name, "total_card_count": len(self.cards.get(wid, []))},
                }
                for wid, name, category_id in self.workflows
                if category_id == category
            ])
        if len(parts) == 5 and parts[2] == "workflows" and parts[4] == "cards":
            cards = self.cards.get(parts[3], [])
            data = [
                {
                    "type": "WorkflowCard",
                    "id": cid,
                    "attributes": {"stage": stage, "created_at": "2025-01-05T12:00:00Z"},
                    "relationships": {"person": {"data": {"type": "Person", "id": pid}}},
                }
                for cid, pid, _first, _last, stage in cards
            ]
            included = [
                {"type": "Person", "id": pid, "attributes": {"first_name": first, "last_name": last}}
                for _cid, pid, first, last, _stage in cards
            ]
            return self._page(data, included)

        if len(parts) == 5 and parts[2] == "groups":
            gid, what = parts[3], parts[4]
            if what == "events":
                return self._page(list(self.events.get(gid, [])))
            if what == "tags":
                return self._page([
                    {"type": "Tag", "id": tid, "attributes": {"name": name}}
                    for tid, name in self.tags.get(gid, [])
                ])
            if what == "memberships":
                members = self.memberships.get(gid, [])
                data = [
                    {
                        "type": "Membership",
                        "id": f"m{pid}",
                        "attributes": {"role": role},
                        "relationships": {"person": {"data": {"type": "Person", "id": pid}}},
                    }
                    for pid, _first, _last, role in members
                ]
                included = [
                    {"type": "Person", "id": pid, "attributes": {"first_name": first, "last_name": last}}
                    for pid, first, last, _role in members
                ]
                return self._page(data, included)

        if len(parts) == 5 and parts[2] == "events" and parts[4] == "attendances":
            total, present = self.attendances.get(parts[3], (0, 0))
            records = [
                {"type": "Attendance", "id": f"{parts[3]}-{i}", "attributes": {"attended": i < present}}
                for i in range(total)
            ]
            return httpx.Response(200, json={"data": records, "meta": {"total_count": total}})

        return httpx.Response(404, json={"errors": [{"status": "404"}]})

    async def async_handler(self, request: httpx.Request) -> httpx.Response:
        if self.attendance_delay and request.url.path.endswith("/attendances"):
            await asyncio.sleep(self.attendance_delay)
        return self.handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.async_handler)


# ── fixtures ──────────────────────────────────────────────────────────────────
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_pco():
    return FakePCO()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'cache.db'}",
        PLANNING_CENTER_APP_ID="app-id",
        PLANNING_CENTER_SECRET="secret",
        PCO_MAX_RETRIES=2,
        PCO_BASE_DELAY_SECONDS=3.0,
        GROUP_REFRESH_DELAY_SECONDS=0.5,
    )


@pytest.fixture
async def services(test_settings, fake_pco, fake_sleep):
    svc = await build_services(test_settings, transport=fake_pco.transport(), sleep=fake_sleep, start_sweeper=False)
    yield svc
    await svc.aclose()


@pytest.fixture
def make_ea():
    """EventAttendance factory: make_ea("e1", "2025-03-05T19:00:00", members=6, roster=10)."""
    def _make(eid, when, *, members=0, visitors=0, roster=10, canceled=False, group_id="G1"):
        event = Event(
            id=eid,
            group_id=group_id,
            name=f"Meeting {eid}",
            starts_at=utc(when),
            canceled=canceled,
            visitor_count=visitors,
        )
        return EventAttendance(event, AttendanceSummary(eid, roster, members, visitors))
    return _make


@pytest.fixture
def make_group():
    """GroupAttendance factory with optional tag metadata."""
    def _make(gid, events, *, name=None, tags=None):
        group = Group(id=gid, name=name or f"Group {gid}", tags=tags or {})
        return GroupAttendance(group_id=gid, events=list(events), overall={}, group_name=group.name, group=group)
    return _make
