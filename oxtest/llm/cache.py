from __future__ import annotations

import hashlib
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from time import monotonic
from typing import Any, Callable

log = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    value: str
    stored_at: float
    hits: int = 0


@dataclass(slots=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class PromptCache:
    """LRU cache of repair responses with a time-to-live.

    One instance lives for one run and is handed to whoever needs it; there
    is no shared module-level cache.
    """

    def __init__(
        self,
        max_entries: int = 256,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def make_key(payload: dict[str, Any]) -> str:
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() - entry.stored_at > self.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            return None
        entry.hits += 1
        self._hits += 1
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: str) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(self._hits, self._misses, self._evictions, len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


class CachingRepairClient:
    def __init__(self, inner, cache: PromptCache) -> None:
        self.inner = inner
        self.cache = cache
        self.provider_name = getattr(inner, "provider_name", "unknown")

    async def repair(self, payload: dict[str, Any]) -> str:
        key = self.cache.make_key(payload)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug("Repair cache hit %s", key[:12])
            return cached
        response = await self.inner.repair(payload)
        self.cache.set(key, response)
        return response
