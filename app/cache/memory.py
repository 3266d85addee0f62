# app/cache/memory.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class _Entry:
    value: Any
    stored_at: float   # wall clock, for display
    stamp: float       # monotonic, for expiry
    ttl: float


class TTLCache:
    """
    Process-local key -> value store with a per-entry TTL.
    An entry's own TTL is honored both when it is read and by the eager
    deletion timer. No capacity eviction.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, *, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        entry = _Entry(value=value, stored_at=time.time(), stamp=self._clock(), ttl=ttl)
        self._entries[key] = entry
        self._schedule_expiry(key, entry)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stamp > entry.ttl:
            self._entries.pop(key, None)
            return None
        return entry.value

    def get_timestamp(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        return entry.stored_at if entry else None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        keys: List[str] = list(self._entries.keys())
        return {"count": len(keys), "keys": keys}

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _schedule_expiry(self, key: str, entry: _Entry) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: read-time expiry only
        loop.call_later(max(entry.ttl, 0.0), self._expire, key, entry)

    def _expire(self, key: str, entry: _Entry) -> None:
        # only drop the entry this timer was scheduled for, not a newer write
        if self._entries.get(key) is entry:
            del self._entries[key]
