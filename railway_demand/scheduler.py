import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .aggregation import round_half_up
from .cache import PartitionCache
from .cancellation import CancellationToken
from .config import FetchPolicy
from .errors import FetchCancelledError, TransportError
from .fetcher import PartitionFetcher
from .models import (
    BatchResult,
    BatchStatus,
    CanonicalRecord,
    PartitionFailure,
    PartitionKey,
    ProgressEvent,
)
from .normalizer import normalize_rows

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


class _Tally:
    """Completion counter shared by the partitions of one run."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback]):
        self.total = total
        self.completed = 0
        self.on_progress = on_progress
        self.failures: List[PartitionFailure] = []

    def record(
        self,
        key: PartitionKey,
        fetched: int,
        error: Optional[str] = None,
        from_cache: bool = False,
    ) -> None:
        self.completed += 1
        if error is not None:
            self.failures.append(
                PartitionFailure(zone=key.zone, query_type=key.query_type, error=error)
            )
        if self.on_progress is None:
            return
        self.on_progress(
            ProgressEvent(
                completed=self.completed,
                total=self.total,
                percentage=int(round_half_up(self.completed / self.total * 100)),
                zone=key.zone,
                query_type=key.query_type,
                records_fetched=fetched,
                error=error,
                from_cache=from_cache,
            )
        )


class BatchScheduler:
    """Runs the zone x query-type cross product in throttled zone batches."""

    def __init__(
        self,
        fetcher: PartitionFetcher,
        cache: PartitionCache,
        policy: Optional[FetchPolicy] = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.policy = policy or fetcher.policy

    @staticmethod
    def partitions(zones: Sequence[str], query_types: Sequence[str]) -> List[PartitionKey]:
        return [
            PartitionKey(zone=zone, query_type=query_type)
            for zone in _unique(zones)
            for query_type in _unique(query_types)
        ]

    async def run_batch(
        self,
        zones: Sequence[str],
        query_types: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """
        Fetch every (zone, query type) partition and merge the records.

        Partition failures are reported through progress events and
        `failed_partitions`; they never abort the run. Cancellation returns
        what was gathered so far with status CANCELLED.
        """
        token = token or CancellationToken()
        zones = _unique(zones)
        query_types = _unique(query_types)
        batch_size = self.policy.batch_size
        tally = _Tally(len(zones) * len(query_types), on_progress)
        started_at = datetime.utcnow()
        records: List[CanonicalRecord] = []

        logger.info(
            "Starting batch: %d zones x %d query types = %d partitions",
            len(zones),
            len(query_types),
            tally.total,
        )

        try:
            for start in range(0, len(zones), batch_size):
                zone_batch = zones[start : start + batch_size]
                for query_type in query_types:
                    token.raise_if_cancelled("batch")
                    results = await asyncio.gather(
                        *(
                            self._run_partition(PartitionKey(zone=zone, query_type=query_type), token, tally)
                            for zone in zone_batch
                        )
                    )
                    for partition_records in results:
                        records.extend(partition_records)

                if start + batch_size < len(zones):
                    await token.sleep(self.policy.batch_delay)
            token.raise_if_cancelled("batch")
            status = BatchStatus.SUCCESS
        except FetchCancelledError:
            logger.warning(
                "Batch cancelled after %d/%d partitions", tally.completed, tally.total
            )
            status = BatchStatus.CANCELLED

        if status is BatchStatus.SUCCESS and tally.total and len(tally.failures) == tally.total:
            status = BatchStatus.ERROR

        result = BatchResult(
            status=status,
            records=records,
            total_count=len(records),
            counts_by_query_type=dict(Counter(record.query_type for record in records)),
            total_partitions=tally.total,
            completed_partitions=tally.completed,
            failed_partitions=tally.failures,
            started_at=started_at,
            finished_at=datetime.utcnow(),
        )
        logger.info(
            "Batch %s: %d records from %d/%d partitions (%d failed)",
            status.value,
            result.total_count,
            tally.completed,
            tally.total,
            len(tally.failures),
        )
        return result

    async def _run_partition(
        self, key: PartitionKey, token: CancellationToken, tally: _Tally
    ) -> Tuple[CanonicalRecord, ...]:
        if token.cancelled:
            return ()

        async def load() -> List[CanonicalRecord]:
            rows = await self.fetcher.fetch(key, token)
            return normalize_rows(rows, query_type=key.query_type, zone=key.zone)

        try:
            records, hit = await self.cache.get_or_load(key, load)
        except FetchCancelledError:
            return ()
        except TransportError as exc:
            tally.record(key, 0, error=str(exc))
            return ()
        except Exception as exc:
            logger.exception("Partition %s failed unexpectedly", key.label)
            tally.record(key, 0, error=f"{type(exc).__name__}: {exc}")
            return ()

        logger.debug("Partition %s done: %d records (cached=%s)", key.label, len(records), hit)
        tally.record(key, len(records), from_cache=hit)
        return records
