# app/services.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, Set

import httpx
from sqlalchemy.engine import Engine

from app.cache.durable import DurableCache
from app.cache.memory import TTLCache
from app.cache.tiered import TieredCache
from app.config import Settings
from app.db import make_engine
from app.membership.snapshots import SnapshotStore
from app.planning_center.attendance import AttendanceFetcher
from app.planning_center.client import PCOClient
from app.planning_center.groups import GroupDirectory
from app.planning_center.workflows import WorkflowDirectory

log = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes / jobs need, built once per process."""
    settings: Settings
    engine: Engine
    client: PCOClient
    cache: TieredCache
    directory: GroupDirectory
    fetcher: AttendanceFetcher
    snapshots: SnapshotStore
    workflows: WorkflowDirectory
    background: Set[asyncio.Task] = field(default_factory=set)

    def run_in_background(self, work: Awaitable[Any], label: str) -> asyncio.Task:
        """
        Start `work` as a task that outlives the request awaiting it.
        A caller that gives up waiting does not cancel it; it finishes and fills the caches.
        """
        task = asyncio.ensure_future(work)
        self.background.add(task)

        def _done(t: asyncio.Task) -> None:
            self.background.discard(t)
            if t.cancelled():
                log.warning("[services] %s cancelled", label)
            elif t.exception() is not None:
                log.warning("[services] %s failed: %s", label, t.exception())
            else:
                log.info("[services] %s finished", label)

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for background work still in flight."""
        if self.background:
            await asyncio.gather(*list(self.background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.cache.durable.close()
        await self.client.aclose()
        self.engine.dispose()


async def build_services(
    settings: Settings,
    *,
    engine: Optional[Engine] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[Any] = None,
    start_sweeper: bool = True,
) -> Services:
    engine = engine or make_engine(settings.DATABASE_URL)

    durable = await DurableCache.open(
        engine,
        start_sweeper=start_sweeper,
        retention_days=settings.CACHE_RETENTION_DAYS,
        sweep_interval_hours=settings.CACHE_SWEEP_INTERVAL_HOURS,
    )
    cache = TieredCache(TTLCache(settings.CACHE_TTL_SECONDS), durable)

    client = PCOClient.from_settings(settings, transport=transport, sleep=sleep)
    directory = GroupDirectory(
        client,
        cache,
        group_type_id=settings.PCO_GROUP_TYPE_ID,
        family_tag_id=settings.FAMILY_GROUP_TAG_ID,
    )
    fetcher = AttendanceFetcher(
        client,
        cache,
        directory,
        event_concurrency=settings.EVENT_FETCH_CONCURRENCY,
        group_delay=settings.GROUP_REFRESH_DELAY_SECONDS,
        sleep=sleep,
    )
    workflows = WorkflowDirectory(
        client,
        cache,
        category_id=settings.DREAM_TEAM_CATEGORY_ID,
        excluded_ids=settings.dream_team_excluded_ids,
    )
    log.info("[services] ready (db=%s, group_type=%s)", engine.url.get_backend_name(), settings.PCO_GROUP_TYPE_ID)
    return Services(
        settings=settings,
        engine=engine,
        client=client,
        cache=cache,
        directory=directory,
        fetcher=fetcher,
        snapshots=SnapshotStore(engine),
        workflows=workflows,
    )
