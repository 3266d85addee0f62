import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from app.cache.durable import DurableCache
from app.cache.memory import TTLCache
from app.cache.tiered import TieredCache
from app.db import make_engine, make_session_factory
from app.models import CacheEntryRow


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'durable.db'}")
    yield eng
    eng.dispose()


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ============================================
# TTLCache
# ============================================
class TestTTLCache:
    def test_entry_expires_after_its_ttl(self):
        cache = TTLCache()
        cache.set("k", "v", ttl=0.001)
        time.sleep(0.01)
        assert cache.get("k") is None
        assert cache.stats()["count"] == 0

    def test_default_ttl_applies_when_none_given(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("k", {"a": 1})
        clock.now += 59
        assert cache.get("k") == {"a": 1}
        clock.now += 2
        assert cache.get("k") is None

    def test_per_entry_ttl_is_honored_on_read(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("long", 1, ttl=100)
        clock.now += 50
        assert cache.get("long") == 1

    def test_stats_and_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.stats() == {"count": 2, "keys": ["a", "b"]}
        cache.clear()
        assert cache.stats() == {"count": 0, "keys": []}

    def test_timestamp_and_delete(self):
        cache = TTLCache()
        before = time.time()
        cache.set("a", 1)
        assert cache.get_timestamp("a") >= before
        cache.delete("a")
        assert cache.get_timestamp("a") is None

    @pytest.mark.anyio
    async def test_eager_timer_removes_entry_without_a_read(self):
        cache = TTLCache()
        cache.set("k", "v", ttl=0.01)
        await asyncio.sleep(0.05)
        assert "k" not in cache.stats()["keys"]

    @pytest.mark.anyio
    async def test_eager_timer_leaves_newer_write_alone(self):
        cache = TTLCache()
        cache.set("k", "old", ttl=0.01)
        cache.set("k", "new", ttl=60)
        await asyncio.sleep(0.05)
        assert cache.get("k") == "new"


# ============================================
# DurableCache
# ============================================
@pytest.mark.anyio
class TestDurableCache:
    async def test_roundtrip_and_timestamp(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        await cache.set("events_1_false", [{"id": "e1"}])

        assert await cache.get("events_1_false") == [{"id": "e1"}]
        ts = await cache.get_timestamp("events_1_false")
        assert ts is not None and ts.tzinfo is not None
        assert await cache.get("missing") is None
        assert await cache.get_timestamp("missing") is None

    async def test_survives_a_new_instance(self, engine):
        first = await DurableCache.open(engine, start_sweeper=False)
        await first.set("all_groups", [{"id": "g"}])
        second = await DurableCache.open(engine, start_sweeper=False)
        assert await second.get("all_groups") == [{"id": "g"}]

    async def test_overwrite_updates_value(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        await cache.set("k", 1)
        await cache.set("k", 2)
        assert await cache.get("k") == 2
        assert (await cache.stats())["count"] == 1

    async def test_age_is_not_staleness_but_needs_refresh_is(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        await cache.set("k", "v")

        later = datetime.now(timezone.utc) + timedelta(hours=2)
        assert await cache.needs_refresh("k", ttl_minutes=60) is False
        assert await cache.needs_refresh("k", ttl_minutes=60, now=later) is True
        assert await cache.needs_refresh("absent", ttl_minutes=60) is True
        assert await cache.get("k") == "v"

    async def test_sweep_removes_only_old_entries(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        await cache.set("fresh", 1)
        Session = make_session_factory(engine)
        with Session() as s:
            s.add(CacheEntryRow(
                key="stale",
                value="2",
                updated_at=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=31),
            ))
            s.commit()

        assert await cache.sweep() == 1
        assert await cache.get("stale") is None
        assert await cache.get("fresh") == 1

    async def test_open_runs_first_sweep(self, engine):
        await DurableCache.open(engine, start_sweeper=False)
        Session = make_session_factory(engine)
        with Session() as s:
            s.add(CacheEntryRow(
                key="ancient",
                value="1",
                updated_at=datetime(2000, 1, 1),
            ))
            s.commit()

        cache = await DurableCache.open(engine, start_sweeper=False)
        assert await cache.get("ancient") is None

    async def test_corrupt_row_reads_as_miss(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        Session = make_session_factory(engine)
        with Session() as s:
            s.add(CacheEntryRow(key="bad", value="{not json", updated_at=datetime(2030, 1, 1)))
            s.commit()
        assert await cache.get("bad") is None

    async def test_clear_and_delete(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=False)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.delete("a")
        assert (await cache.stats())["keys"] == ["b"]
        assert await cache.clear() == 1

    async def test_sweeper_task_starts_and_stops(self, engine):
        cache = await DurableCache.open(engine, start_sweeper=True)
        assert cache._sweeper is not None and not cache._sweeper.done()
        await cache.close()
        assert cache._sweeper is None


# ============================================
# TieredCache
# ============================================
@pytest.mark.anyio
class TestTieredCache:
    async def test_loader_runs_once_then_memory_serves(self, engine):
        cache = TieredCache(TTLCache(), await DurableCache.open(engine, start_sweeper=False))
        calls = []

        async def loader():
            calls.append(1)
            return {"n": len(calls)}

        assert await cache.get_or_load("k", loader) == {"n": 1}
        assert await cache.get_or_load("k", loader) == {"n": 1}
        assert len(calls) == 1
        assert await cache.durable.get("k") == {"n": 1}

    async def test_durable_hit_refills_memory(self, engine):
        durable = await DurableCache.open(engine, start_sweeper=False)
        await durable.set("k", [1, 2])
        cache = TieredCache(TTLCache(), durable)

        async def loader():
            raise AssertionError("should not load")

        assert await cache.get_or_load("k", loader) == [1, 2]
        assert cache.memory.get("k") == [1, 2]

    async def test_force_refresh_bypasses_both_tiers(self, engine):
        cache = TieredCache(TTLCache(), await DurableCache.open(engine, start_sweeper=False))
        values = iter(["first", "second"])

        async def loader():
            return next(values)

        await cache.get_or_load("k", loader)
        assert await cache.get_or_load("k", loader, force_refresh=True) == "second"
        assert await cache.durable.get("k") == "second"
