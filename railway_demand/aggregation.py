"""
Reducers that fold canonical records into dashboard summaries.

Reducers never mutate their input and always return freshly built
bucket models. Ranked outputs are sorted on
(metric descending, first-seen position ascending) before any truncation,
so ties keep the order in which their keys first appeared.
"""

import math
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel

from .errors import AggregationInputError, UnknownReducerError
from .models import (
    MONTH_NAMES,
    CanonicalRecord,
    CommodityBucket,
    DashboardView,
    DestinationBucket,
    DivisionBucket,
    HourBucket,
    MonthBucket,
    PartyBucket,
    PriorityBucket,
    QueryTypeBucket,
    RakeTypeBucket,
    RouteBucket,
    SummaryStats,
    ZoneBucket,
)

UNKNOWN = "Unknown"
DEFAULT_LIMIT = 10
DEFAULT_ROUTE_LIMIT = 12

B = TypeVar("B", bound=BaseModel)

_HOUR = re.compile(r"^\s*(\d+)")


def _ranked(buckets: Dict[Any, B], metric: str, limit: Optional[int] = None) -> List[B]:
    ordered = sorted(
        enumerate(buckets.values()),
        key=lambda pair: (-getattr(pair[1], metric), pair[0]),
    )
    ranked = [bucket for _, bucket in ordered]
    return ranked if limit is None else ranked[:limit]


def _check_limit(limit: Optional[int]) -> Optional[int]:
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise AggregationInputError(f"limit must be a non-negative integer, got {limit!r}")
    return limit


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def aggregate_by_month(records: Iterable[CanonicalRecord]) -> List[MonthBucket]:
    buckets: Dict[str, MonthBucket] = {}
    for record in records:
        if record.month is None or record.year is None:
            continue
        key = f"{record.year}-{record.month}"
        if key not in buckets:
            buckets[key] = MonthBucket(
                month=MONTH_NAMES[record.month], year=record.year, month_num=record.month
            )
        bucket = buckets[key]
        bucket.demands += 1
        bucket.units += record.rake_units
    return sorted(buckets.values(), key=lambda b: (b.year, b.month_num))


def aggregate_by_commodity(records: Iterable[CanonicalRecord]) -> List[CommodityBucket]:
    buckets: Dict[str, CommodityBucket] = {}
    for record in records:
        name = record.commodity or record.rake_commodity or UNKNOWN
        bucket = buckets.setdefault(name, CommodityBucket(name=name))
        bucket.value += 1
        bucket.units += record.rake_units
    return _ranked(buckets, "value")


def _party_totals(records: Iterable[CanonicalRecord], field: str) -> Dict[str, PartyBucket]:
    buckets: Dict[str, PartyBucket] = {}
    for record in records:
        name = getattr(record, field) or UNKNOWN
        bucket = buckets.setdefault(name, PartyBucket(name=name))
        bucket.orders += 1
        bucket.units += record.rake_units
    return buckets


def top_consignors(
    records: Iterable[CanonicalRecord], limit: Optional[int] = DEFAULT_LIMIT
) -> List[PartyBucket]:
    return _ranked(_party_totals(records, "consignor"), "orders", _check_limit(limit))


def consignee_analysis(
    records: Iterable[CanonicalRecord], limit: Optional[int] = DEFAULT_LIMIT
) -> List[PartyBucket]:
    return _ranked(_party_totals(records, "consignee"), "orders", _check_limit(limit))


def top_destinations(
    records: Iterable[CanonicalRecord], limit: Optional[int] = DEFAULT_LIMIT
) -> List[DestinationBucket]:
    limit = _check_limit(limit)
    buckets: Dict[str, DestinationBucket] = {}
    for record in records:
        name = record.destination or UNKNOWN
        bucket = buckets.setdefault(name, DestinationBucket(name=name))
        bucket.shipments += 1
        bucket.units += record.rake_units
    return _ranked(buckets, "shipments", limit)


def aggregate_by_zone(records: Iterable[CanonicalRecord]) -> List[ZoneBucket]:
    buckets: Dict[str, ZoneBucket] = {}
    for record in records:
        zone = record.zone or UNKNOWN
        bucket = buckets.setdefault(zone, ZoneBucket(zone=zone))
        bucket.orders += 1
        bucket.units += record.rake_units
    return _ranked(buckets, "orders")


def aggregate_by_rake_type(
    records: Iterable[CanonicalRecord], limit: Optional[int] = DEFAULT_LIMIT
) -> List[RakeTypeBucket]:
    limit = _check_limit(limit)
    buckets: Dict[str, RakeTypeBucket] = {}
    for record in records:
        name = record.indent_type or UNKNOWN
        bucket = buckets.setdefault(name, RakeTypeBucket(name=name))
        bucket.units += record.rake_units
        bucket.count += 1
    return _ranked(buckets, "units", limit)


def aggregate_by_division(records: Iterable[CanonicalRecord]) -> List[DivisionBucket]:
    buckets: Dict[str, DivisionBucket] = {}
    for record in records:
        division = record.division or UNKNOWN
        bucket = buckets.setdefault(division, DivisionBucket(division=division))
        bucket.orders += 1
        bucket.total_units += record.rake_units
    for bucket in buckets.values():
        bucket.avg_units = (
            int(round_half_up(bucket.total_units / bucket.orders)) if bucket.orders else 0
        )
    return _ranked(buckets, "orders")


def query_type_distribution(records: Iterable[CanonicalRecord]) -> List[QueryTypeBucket]:
    buckets: Dict[str, QueryTypeBucket] = {}
    for record in records:
        name = record.query_type or UNKNOWN
        bucket = buckets.setdefault(name, QueryTypeBucket(name=name))
        bucket.count += 1
        bucket.units += record.rake_units
    return _ranked(buckets, "count")


def _hour_of(record: CanonicalRecord) -> Optional[int]:
    if not record.demand_time:
        return None
    match = _HOUR.match(record.demand_time.split(":")[0])
    if match is None:
        return None
    hour = int(match.group(1))
    return hour if 0 <= hour < 24 else None


def time_distribution(records: Iterable[CanonicalRecord]) -> List[HourBucket]:
    buckets = [HourBucket(hour=f"{hour:02d}:00") for hour in range(24)]
    for record in records:
        hour = _hour_of(record)
        if hour is not None:
            buckets[hour].orders += 1
    return buckets


def priority_distribution(records: Iterable[CanonicalRecord]) -> List[PriorityBucket]:
    buckets: Dict[str, PriorityBucket] = {}
    for record in records:
        name = record.priority_code or UNKNOWN
        bucket = buckets.setdefault(name, PriorityBucket(name=name))
        bucket.count += 1
    return _ranked(buckets, "count")


def route_analysis(
    records: Iterable[CanonicalRecord], limit: Optional[int] = DEFAULT_ROUTE_LIMIT
) -> List[RouteBucket]:
    limit = _check_limit(limit)
    buckets: Dict[str, RouteBucket] = {}
    for record in records:
        origin = record.origin_station or UNKNOWN
        destination = record.destination or UNKNOWN
        route = f"{origin} → {destination}"
        bucket = buckets.setdefault(
            route, RouteBucket(route=route, origin=origin, destination=destination)
        )
        bucket.shipments += 1
        bucket.units += record.rake_units
    return _ranked(buckets, "shipments", limit)


def summary_statistics(records: Iterable[CanonicalRecord]) -> SummaryStats:
    records = list(records)
    total_orders = len(records)
    total_units = sum(record.rake_units for record in records)

    def distinct(values: Iterable[Optional[str]]) -> int:
        return len({value for value in values if value is not None})

    return SummaryStats(
        total_orders=total_orders,
        total_units=total_units,
        avg_units_per_order=(
            round_half_up(total_units / total_orders, 2) if total_orders else 0.0
        ),
        unique_consignors=distinct(r.consignor for r in records),
        unique_consignees=distinct(r.consignee for r in records),
        unique_destinations=distinct(r.destination for r in records),
        unique_commodities=distinct(r.commodity or r.rake_commodity for r in records),
        unique_divisions=distinct(r.division for r in records),
        unique_zones=distinct(r.zone for r in records),
    )


REDUCERS: Dict[str, Callable[..., Any]] = {
    "month": aggregate_by_month,
    "commodity": aggregate_by_commodity,
    "consignors": top_consignors,
    "destinations": top_destinations,
    "zone": aggregate_by_zone,
    "rake_type": aggregate_by_rake_type,
    "division": aggregate_by_division,
    "consignees": consignee_analysis,
    "query_type": query_type_distribution,
    "time": time_distribution,
    "priority": priority_distribution,
    "routes": route_analysis,
    "summary": summary_statistics,
}

LIMITED_REDUCERS = {"consignors", "destinations", "rake_type", "consignees", "routes"}


def aggregate(records: Sequence[CanonicalRecord], name: str, **options: Any) -> Any:
    """Run the reducer registered as `name`; only ranked top-N reducers take `limit`."""
    reducer = REDUCERS.get(name)
    if reducer is None:
        raise UnknownReducerError(f"Unknown reducer '{name}'")
    unexpected = set(options) - ({"limit"} if name in LIMITED_REDUCERS else set())
    if unexpected:
        raise AggregationInputError(
            f"Reducer '{name}' does not accept options: {', '.join(sorted(unexpected))}"
        )
    return reducer(records, **options)


def build_dashboard(
    records: Sequence[CanonicalRecord],
    limit: Optional[int] = DEFAULT_LIMIT,
    route_limit: Optional[int] = DEFAULT_ROUTE_LIMIT,
) -> DashboardView:
    return DashboardView(
        summary=summary_statistics(records),
        by_month=aggregate_by_month(records),
        by_commodity=aggregate_by_commodity(records),
        top_consignors=top_consignors(records, limit),
        top_destinations=top_destinations(records, limit),
        by_zone=aggregate_by_zone(records),
        by_rake_type=aggregate_by_rake_type(records, limit),
        by_division=aggregate_by_division(records),
        consignees=consignee_analysis(records, limit),
        by_query_type=query_type_distribution(records),
        time_distribution=time_distribution(records),
        by_priority=priority_distribution(records),
        routes=route_analysis(records, route_limit),
    )
