# app/cache/tiered.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from app.cache.durable import DurableCache
from app.cache.memory import TTLCache

log = logging.getLogger(__name__)


class TieredCache:
    """Memory first, then durable, then the loader. Loads are written to both tiers."""

    def __init__(self, memory: TTLCache, durable: DurableCache):
        self.memory = memory
        self.durable = durable

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> Any:
        if not force_refresh:
            hit = self.memory.get(key)
            if hit is not None:
                return hit
            hit = await self.durable.get(key)
            if hit is not None:
                self.memory.set(key, hit, ttl)
                return hit

        value = await loader()
        self.memory.set(key, value, ttl)
        await self.durable.set(key, value)
        return value

    async def clear(self) -> int:
        self.memory.clear()
        return await self.durable.clear()
