# app/cache/durable.py
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import anyio
from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db import init_db, make_session_factory
from app.models import CacheEntryRow

log = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_SWEEP_INTERVAL_HOURS = 24.0


def _utcnow_naive() -> datetime:
    # stored as naive UTC (timestamp without time zone)
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _json_default(o):
    if isinstance(o, datetime):
        return o.isoformat()
    return str(o)


class DurableCache:
    """
    SQL-backed key -> JSON cache that survives restarts.
    get() never treats age as staleness; callers ask needs_refresh().
    Old rows are swept on open and then every sweep interval.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        sweep_interval_hours: float = DEFAULT_SWEEP_INTERVAL_HOURS,
    ):
        self.engine = engine
        self.retention_days = retention_days
        self.sweep_interval_hours = sweep_interval_hours
        self._Session = make_session_factory(engine)
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    async def open(cls, engine: Engine, *, start_sweeper: bool = True, **kwargs) -> "DurableCache":
        """Create tables, run the first retention sweep, optionally start the periodic one."""
        cache = cls(engine, **kwargs)
        await anyio.to_thread.run_sync(init_db, engine)
        await cache.sweep()
        if start_sweeper:
            cache.start_sweeper()
        return cache

    # ── sync bodies (run in a worker thread) ──────────────────────────────────
    def _get_sync(self, key: str) -> Optional[Any]:
        try:
            with self._Session() as s:
                row = s.get(CacheEntryRow, key)
                if row is None:
                    return None
                return json.loads(row.value)
        except (SQLAlchemyError, ValueError) as e:
            log.warning("[cache] durable read failed for %s, treating as miss: %s", key, e)
            return None

    def _set_sync(self, key: str, value: Any) -> None:
        payload = json.dumps(value, default=_json_default)
        with self._Session() as s:
            row = s.get(CacheEntryRow, key)
            if row is None:
                s.add(CacheEntryRow(key=key, value=payload, updated_at=_utcnow_naive()))
            else:
                row.value = payload
                row.updated_at = _utcnow_naive()
            s.commit()

    def _timestamp_sync(self, key: str) -> Optional[datetime]:
        try:
            with self._Session() as s:
                ts = s.execute(select(CacheEntryRow.updated_at).where(CacheEntryRow.key == key)).scalar_one_or_none()
        except SQLAlchemyError as e:
            log.warning("[cache] durable timestamp read failed for %s: %s", key, e)
            return None
        return ts.replace(tzinfo=timezone.utc) if ts else None

    def _delete_sync(self, key: Optional[str]) -> int:
        with self._Session() as s:
            stmt = delete(CacheEntryRow)
            if key is not None:
                stmt = stmt.where(CacheEntryRow.key == key)
            n = s.execute(stmt).rowcount or 0
            s.commit()
            return n

    def _sweep_sync(self, retention_days: int) -> int:
        cutoff = _utcnow_naive() - timedelta(days=retention_days)
        with self._Session() as s:
            n = s.execute(delete(CacheEntryRow).where(CacheEntryRow.updated_at < cutoff)).rowcount or 0
            s.commit()
            return n

    def _stats_sync(self) -> Dict[str, Any]:
        with self._Session() as s:
            keys = list(s.execute(select(CacheEntryRow.key).order_by(CacheEntryRow.key)).scalars())
            oldest = s.execute(select(func.min(CacheEntryRow.updated_at))).scalar_one_or_none()
        return {
            "count": len(keys),
            "keys": keys,
            "oldest": oldest.replace(tzinfo=timezone.utc).isoformat() if oldest else None,
        }

    # ── async API ─────────────────────────────────────────────────────────────
    async def get(self, key: str) -> Optional[Any]:
        return await anyio.to_thread.run_sync(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await anyio.to_thread.run_sync(self._set_sync, key, value)

    async def get_timestamp(self, key: str) -> Optional[datetime]:
        return await anyio.to_thread.run_sync(self._timestamp_sync, key)

    async def needs_refresh(self, key: str, ttl_minutes: float, *, now: Optional[datetime] = None) -> bool:
        ts = await self.get_timestamp(key)
        if ts is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - ts > timedelta(minutes=ttl_minutes)

    async def delete(self, key: str) -> None:
        await anyio.to_thread.run_sync(self._delete_sync, key)

    async def clear(self) -> int:
        return await anyio.to_thread.run_sync(self._delete_sync, None)

    async def stats(self) -> Dict[str, Any]:
        return await anyio.to_thread.run_sync(self._stats_sync)

    async def sweep(self, retention_days: Optional[int] = None) -> int:
        days = self.retention_days if retention_days is None else retention_days
        deleted = await anyio.to_thread.run_sync(self._sweep_sync, days)
        log.info("[cache] retention sweep removed %d entries older than %d days", deleted, days)
        return deleted

    # ── periodic sweep ────────────────────────────────────────────────────────
    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        interval = self.sweep_interval_hours * 3600
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except SQLAlchemyError as e:
                log.warning("[cache] retention sweep failed: %s", e)

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
