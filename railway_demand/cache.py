import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from .models import CacheStats, CanonicalRecord, PartitionKey

logger = logging.getLogger(__name__)

CachedRecords = Tuple[CanonicalRecord, ...]


class PartitionCache:
    """Session-lifetime memo of normalized records per partition."""

    def __init__(self) -> None:
        self._entries: Dict[PartitionKey, CachedRecords] = {}
        self._locks: Dict[PartitionKey, asyncio.Lock] = {}

    def get(self, key: PartitionKey) -> Optional[CachedRecords]:
        return self._entries.get(key)

    def put(self, key: PartitionKey, records: Iterable[CanonicalRecord]) -> CachedRecords:
        frozen = tuple(records)
        self._entries[key] = frozen
        return frozen

    def __contains__(self, key: PartitionKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        # locks survive so a load still in flight keeps its key single-flight
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            entries=len(self._entries),
            records=sum(len(records) for records in self._entries.values()),
        )

    async def get_or_load(
        self,
        key: PartitionKey,
        loader: Callable[[], Awaitable[Iterable[CanonicalRecord]]],
    ) -> Tuple[CachedRecords, bool]:
        """
        Return the cached records for `key`, loading them once if absent.

        Concurrent callers for the same key share one load. A failing loader
        leaves no entry behind.

        Returns:
            (records, hit) where hit tells whether the loader was skipped
        """
        cached = self._entries.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key.label)
            return cached, True

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached, True
            records = await loader()
            return self.put(key, records), False
