"""
Per-lead TTL cache for computed scores.

Entries are keyed by (lead_id, model_id) so a score from one model version is
never served for another. Each entry remembers the TTL in force when it was
inserted; lowering the TTL later shortens existing entries too, so an entry
is valid while ``now - inserted_at < min(entry.ttl, current ttl)``. Expired
entries are never returned, whether or not the periodic sweep has run yet.

The cache is process-wide state shared by concurrent scoring flows; every
mutation happens under an asyncio.Lock. When full, the oldest inserted entry
is evicted first.

Usage:
    cache = ScoreCache(ttl_seconds=300, max_entries=10_000)
    await cache.set(score)
    hit = await cache.get("lead-1", "model-abc")
    removed = await cache.sweep_expired()
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from leadscore.core.errors import ValidationError
from leadscore.models.schemas import Score


logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    lead_id: str
    model_id: str
    score: Score
    inserted_at: float
    ttl: float


class ScoreCache:
    """
    TTL cache of Score objects keyed by (lead_id, model_id).

    Args:
        ttl_seconds: Time-to-live for new entries.
        max_entries: Capacity; the oldest entry is evicted beyond it.
        enabled: When False, get() always misses and set() is a no-op.
        clock: Monotonic time source in seconds. Injected by tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 10_000,
        enabled: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        if ttl_seconds <= 0:
            raise ValidationError("Cache TTL must be positive")
        if max_entries < 1:
            raise ValidationError("Cache capacity must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at < min(entry.ttl, self.ttl_seconds)

    async def get(self, lead_id: str, model_id: str) -> Optional[Score]:
        if not self.enabled:
            return None
        key = (lead_id, model_id)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if not self._is_fresh(entry, self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.score

    async def set(self, score: Score) -> None:
        if not self.enabled:
            return
        key = (score.leadId, score.modelId)
        async with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                self.evictions += 1
            self._entries[key] = CacheEntry(
                lead_id=score.leadId,
                model_id=score.modelId,
                score=score,
                inserted_at=self._clock(),
                ttl=self.ttl_seconds,
            )

    async def invalidate(self, lead_id: Optional[str] = None) -> int:
        """
        Drop cached scores for one lead (all models) or, with no lead_id,
        everything. Returns the number of entries removed.
        """
        async with self._lock:
            if lead_id is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                keys = [k for k in self._entries if k[0] == lead_id]
                for k in keys:
                    del self._entries[k]
                removed = len(keys)
        logger.info(f"Invalidated {removed} cached score(s)" + (f" for lead {lead_id}" if lead_id else ""))
        return removed

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    async def update_settings(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValidationError("Cache TTL must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValidationError("Cache capacity must be at least 1")

        async with self._lock:
            if ttl_seconds is not None:
                self.ttl_seconds = ttl_seconds
            if max_entries is not None:
                self.max_entries = max_entries
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                    self.evictions += 1
            if enabled is not None:
                self.enabled = enabled
                if not enabled:
                    self._entries.clear()

        logger.info(
            f"Cache settings updated: ttl={self.ttl_seconds}s "
            f"max_entries={self.max_entries} enabled={self.enabled}"
        )
        return self.stats()

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "ttlSeconds": self.ttl_seconds,
            "maxEntries": self.max_entries,
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hitRate": self.hits / lookups if lookups else 0.0,
        }
