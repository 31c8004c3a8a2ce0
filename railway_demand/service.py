import logging
from typing import Any, Iterable, List, Optional, Sequence

from .aggregation import DEFAULT_LIMIT, DEFAULT_ROUTE_LIMIT, aggregate, build_dashboard
from .cache import PartitionCache
from .cancellation import CancellationToken
from .config import FetchPolicy
from .errors import FetchInProgressError
from .fetcher import PartitionFetcher
from .filters import apply_filters, filter_options
from .models import (
    BatchResult,
    CacheStats,
    CanonicalRecord,
    DashboardView,
    FilterCriteria,
    FilterOptions,
    ProgressEvent,
)
from .scheduler import BatchScheduler, ProgressCallback
from .sources import PartitionSource

logger = logging.getLogger(__name__)


class RailwayDataService:
    """Owns the partition cache and scheduler for one session of dashboard data."""

    def __init__(
        self,
        source: PartitionSource,
        zones: Iterable[str],
        query_types: Iterable[str],
        policy: Optional[FetchPolicy] = None,
        refresh_bypasses_cache: bool = True,
        top_n: int = DEFAULT_LIMIT,
        route_top_n: int = DEFAULT_ROUTE_LIMIT,
    ):
        self.source = source
        self.zones = list(zones)
        self.query_types = list(query_types)
        self.policy = policy or FetchPolicy()
        self.refresh_bypasses_cache = refresh_bypasses_cache
        self.top_n = top_n
        self.route_top_n = route_top_n

        self.cache = PartitionCache()
        self.fetcher = PartitionFetcher(source, self.policy)
        self.scheduler = BatchScheduler(self.fetcher, self.cache, self.policy)

        self.records: List[CanonicalRecord] = []
        self.last_result: Optional[BatchResult] = None
        self.last_progress: Optional[ProgressEvent] = None
        self._token: Optional[CancellationToken] = None

    @property
    def is_fetching(self) -> bool:
        return self._token is not None

    async def run_batch(
        self,
        zones: Sequence[str],
        query_types: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        if self._token is not None:
            raise FetchInProgressError("A fetch is already running")
        self._token = CancellationToken()

        def track(event: ProgressEvent) -> None:
            self.last_progress = event
            if on_progress is not None:
                on_progress(event)

        try:
            result = await self.scheduler.run_batch(zones, query_types, track, self._token)
        finally:
            self._token = None

        self.last_result = result
        self.records = result.records
        return result

    async def fetch_all(self, on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        return await self.run_batch(self.zones, self.query_types, on_progress)

    async def fetch_selected_zones(
        self,
        zones: Sequence[str],
        query_types: Optional[Sequence[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        query_types = list(query_types) if query_types else self.query_types
        self.validate_selection(zones, query_types)
        return await self.run_batch(zones, query_types, on_progress)

    def validate_selection(self, zones: Sequence[str], query_types: Sequence[str]) -> None:
        unknown = [z for z in zones if z not in self.zones] + [
            q for q in query_types if q not in self.query_types
        ]
        if unknown:
            raise ValueError(f"Unknown zones or query types: {', '.join(unknown)}")

    async def refresh(self, on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        if self.is_fetching:
            raise FetchInProgressError("A fetch is already running")
        if self.refresh_bypasses_cache:
            logger.info("Refresh requested; clearing %d cached partitions", len(self.cache))
            self.cache.clear()
        return await self.fetch_all(on_progress)

    def cancel(self) -> bool:
        if self._token is None:
            return False
        logger.warning("Cancellation requested")
        self._token.cancel()
        return True

    def clear_cache(self) -> None:
        if self.is_fetching:
            raise FetchInProgressError("Cannot clear the cache while a fetch is running")
        self.cache.clear()

    def cache_size(self) -> CacheStats:
        return self.cache.stats()

    def filtered(self, criteria: Optional[FilterCriteria] = None) -> List[CanonicalRecord]:
        return apply_filters(self.records, criteria)

    def aggregate(
        self, name: str, criteria: Optional[FilterCriteria] = None, **options: Any
    ) -> Any:
        return aggregate(self.filtered(criteria), name, **options)

    def dashboard(self, criteria: Optional[FilterCriteria] = None) -> DashboardView:
        return build_dashboard(self.filtered(criteria), self.top_n, self.route_top_n)

    def filter_options(self) -> FilterOptions:
        return filter_options(self.records)
