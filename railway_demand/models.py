from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RawRecord = Dict[str, Any]

MONTH_NAMES = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]


class PartitionKey(BaseModel):
    """One unit of fetch work: a zone paired with a query type."""

    model_config = ConfigDict(frozen=True)

    zone: str
    query_type: str

    @property
    def label(self) -> str:
        return f"{self.zone}-{self.query_type}"


class CanonicalRecord(BaseModel):
    """Normalized demand row shared by every source schema."""

    model_config = ConfigDict(frozen=True)

    division: Optional[str] = None
    origin_station: Optional[str] = None
    demand_number: Optional[str] = None
    demand_date_text: Optional[str] = None
    demand_time: Optional[str] = None
    consignor: Optional[str] = None
    consignee: Optional[str] = None
    commodity: Optional[str] = None
    traffic_type: Optional[str] = None
    priority_code: Optional[str] = None
    pbf: Optional[str] = None
    via: Optional[str] = None
    rake_commodity: Optional[str] = None
    destination: Optional[str] = None
    indent_type: Optional[str] = None
    indent_units: Optional[str] = None
    indent_8w: Optional[str] = None
    outstanding_units: Optional[str] = None
    outstanding_8w: Optional[str] = None
    supplied_units: Optional[str] = None
    supplied_time: Optional[str] = None
    zone: Optional[str] = None
    query_type: str

    demand_date: Optional[date] = None
    month: Optional[int] = Field(default=None, ge=0, le=11)
    year: Optional[int] = None
    rake_units: int = 0
    rake_8w: int = 0


class ProgressEvent(BaseModel):
    completed: int
    total: int
    percentage: int = Field(ge=0, le=100)
    zone: str
    query_type: str
    records_fetched: int = 0
    error: Optional[str] = None
    from_cache: bool = False


class BatchStatus(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"


class PartitionFailure(BaseModel):
    zone: str
    query_type: str
    error: str


class BatchResult(BaseModel):
    """Merged outcome of one batch run."""

    status: BatchStatus
    records: List[CanonicalRecord] = Field(default_factory=list)
    total_count: int = 0
    counts_by_query_type: Dict[str, int] = Field(default_factory=dict)
    total_partitions: int = 0
    completed_partitions: int = 0
    failed_partitions: List[PartitionFailure] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime


class CacheStats(BaseModel):
    entries: int
    records: int


class FilterCriteria(BaseModel):
    """Dashboard filters; None or "ALL" disables a key."""

    zone: Optional[str] = None
    month: Optional[Union[int, str]] = None
    query_type: Optional[str] = None
    commodity: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class FilterOptions(BaseModel):
    zones: List[str]
    commodities: List[str]
    query_types: List[str]
    months: List[str]


class MonthBucket(BaseModel):
    month: str
    year: int
    month_num: int
    demands: int = 0
    units: int = 0


class CommodityBucket(BaseModel):
    name: str
    value: int = 0
    units: int = 0


class PartyBucket(BaseModel):
    """Consignor or consignee totals."""

    name: str
    orders: int = 0
    units: int = 0


class DestinationBucket(BaseModel):
    name: str
    shipments: int = 0
    units: int = 0


class ZoneBucket(BaseModel):
    zone: str
    orders: int = 0
    units: int = 0


class RakeTypeBucket(BaseModel):
    name: str
    units: int = 0
    count: int = 0


class DivisionBucket(BaseModel):
    division: str
    orders: int = 0
    total_units: int = 0
    avg_units: int = 0


class QueryTypeBucket(BaseModel):
    name: str
    count: int = 0
    units: int = 0


class HourBucket(BaseModel):
    hour: str
    orders: int = 0


class PriorityBucket(BaseModel):
    name: str
    count: int = 0


class RouteBucket(BaseModel):
    route: str
    origin: str
    destination: str
    shipments: int = 0
    units: int = 0


class SummaryStats(BaseModel):
    total_orders: int = 0
    total_units: int = 0
    avg_units_per_order: float = 0.0
    unique_consignors: int = 0
    unique_consignees: int = 0
    unique_destinations: int = 0
    unique_commodities: int = 0
    unique_divisions: int = 0
    unique_zones: int = 0


class DashboardView(BaseModel):
    """Every aggregation for one filtered record set."""

    summary: SummaryStats
    by_month: List[MonthBucket]
    by_commodity: List[CommodityBucket]
    top_consignors: List[PartyBucket]
    top_destinations: List[DestinationBucket]
    by_zone: List[ZoneBucket]
    by_rake_type: List[RakeTypeBucket]
    by_division: List[DivisionBucket]
    consignees: List[PartyBucket]
    by_query_type: List[QueryTypeBucket]
    time_distribution: List[HourBucket]
    by_priority: List[PriorityBucket]
    routes: List[RouteBucket]
