from datetime import date
from typing import Iterable, List, Optional, Union

from .models import MONTH_NAMES, CanonicalRecord, FilterCriteria, FilterOptions

ALL = "ALL"


def _active(value: Optional[Union[str, int]]) -> bool:
    return value is not None and value != ALL and value != ""


def month_index(value: Union[int, str]) -> int:
    """Resolve a month filter given as 0-11, a numeric string, or a name like 'Jan'."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid month: {value!r}")
    if isinstance(value, int):
        index = value
    else:
        text = value.strip()
        if text.lstrip("-").isdigit():
            index = int(text)
        else:
            names = [name.lower() for name in MONTH_NAMES]
            key = text[:3].lower()
            if key not in names:
                raise ValueError(f"Invalid month: {value!r}")
            index = names.index(key)
    if not 0 <= index <= 11:
        raise ValueError(f"Month index out of range: {value!r}")
    return index


def filter_by_date_range(
    records: Iterable[CanonicalRecord],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[CanonicalRecord]:
    """Inclusive date-range filter; undated records drop out once a bound is set."""
    if start is None and end is None:
        return list(records)
    result: List[CanonicalRecord] = []
    for record in records:
        if record.demand_date is None:
            continue
        if start is not None and record.demand_date < start:
            continue
        if end is not None and record.demand_date > end:
            continue
        result.append(record)
    return result


def apply_filters(
    records: Iterable[CanonicalRecord], criteria: Optional[FilterCriteria] = None
) -> List[CanonicalRecord]:
    filtered = list(records)
    if criteria is None:
        return filtered

    if _active(criteria.zone):
        filtered = [r for r in filtered if r.zone == criteria.zone]

    if _active(criteria.month):
        index = month_index(criteria.month)
        filtered = [r for r in filtered if r.month == index]

    if _active(criteria.query_type):
        filtered = [r for r in filtered if r.query_type == criteria.query_type]

    if _active(criteria.commodity):
        filtered = [
            r
            for r in filtered
            if r.commodity == criteria.commodity or r.rake_commodity == criteria.commodity
        ]

    return filter_by_date_range(filtered, criteria.start_date, criteria.end_date)


def filter_options(records: Iterable[CanonicalRecord]) -> FilterOptions:
    zones = set()
    commodities = set()
    query_types = set()
    months = set()
    for record in records:
        if record.zone:
            zones.add(record.zone)
        commodity = record.commodity or record.rake_commodity
        if commodity:
            commodities.add(commodity)
        query_types.add(record.query_type)
        if record.month is not None:
            months.add(record.month)
    return FilterOptions(
        zones=sorted(zones),
        commodities=sorted(commodities),
        query_types=sorted(query_types),
        months=[MONTH_NAMES[index] for index in sorted(months)],
    )
