import logging
import math
import re
from datetime import date, datetime
from numbers import Number
from typing import Any, Dict, Iterable, List, Optional

from .errors import ParseError
from .models import CanonicalRecord, RawRecord

logger = logging.getLogger(__name__)

TOTAL_SENTINEL = "TOTAL"
UNKNOWN = "Unknown"

# canonical field -> accepted raw keys (upstream API first, then database columns)
FIELD_ALIASES: Dict[str, List[str]] = {
    "division": ["dvsn", "Division"],
    "origin_station": ["sttnfrom", "Station_From"],
    "demand_number": ["dmndno", "Demand_No"],
    "demand_date_text": ["dmnddate", "Demand_Date"],
    "demand_time": ["dmndtime", "Demand_Time", "time"],
    "consignor": ["csnr", "Consignor"],
    "consignee": ["cnsg", "Consignee"],
    "commodity": ["cmdt", "Commodity"],
    "traffic_type": ["tt", "Traffic_Type"],
    "priority_code": ["pc", "PC"],
    "pbf": ["pbf", "PBF"],
    "via": ["via", "VIA"],
    "rake_commodity": ["rakecmdt", "Rake_Commodity"],
    "destination": ["dstn", "Destination"],
    "indent_type": ["indttype", "Indented_Type"],
    "indent_units": ["indtunit", "Indented_Units"],
    "indent_8w": ["indt8w", "Indented_8W"],
    "outstanding_units": ["ostgunit", "Outstanding_Units"],
    "outstanding_8w": ["ostg8w", "Outstanding_8W"],
    "supplied_units": ["spldunit", "Supplied_Units"],
    "supplied_time": ["spldtime", "Supplied_Time", "MetwithDate"],
    "zone": ["zone", "Zone"],
    "query_type": ["qry"],
}

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d-%b-%Y", "%Y/%m/%d", "%d.%m.%Y")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _lookup(row: Dict[str, Any], lowered: Dict[str, str], aliases: List[str]) -> Any:
    for alias in aliases:
        if alias in row:
            return row[alias]
        key = lowered.get(alias.lower())
        if key is not None:
            return row[key]
    return None


def parse_date(value: Any) -> date:
    """
    Parse a demand date from any supported source representation.

    Raises:
        ParseError: value is empty or in no recognised format
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value)
    if text is None:
        raise ParseError("empty date")

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    head = text.split()[0].split("T")[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    raise ParseError(f"unrecognised date '{text}'")


def parse_int(value: Any) -> int:
    """
    Parse the leading integer of `value`, the way a lenient UI would.

    Raises:
        ParseError: no integer can be read
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Number):
        number = float(value)
        if not math.isfinite(number):
            raise ParseError(f"non-finite number {value!r}")
        return int(number)
    text = _text(value)
    if text is None:
        raise ParseError("empty number")
    match = _LEADING_INT.match(text)
    if match is None:
        raise ParseError(f"not a number: '{text}'")
    return int(match.group(1))


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None and _text(value) is not None:
            return value
    return None


def _units(*candidates: Any) -> int:
    value = _first_present(*candidates)
    if value is None:
        return 0
    try:
        return parse_int(value)
    except ParseError:
        return 0


def is_summary_row(row: RawRecord) -> bool:
    lowered = {key.lower(): key for key in row}
    division = _text(_lookup(row, lowered, FIELD_ALIASES["division"]))
    zone = _text(_lookup(row, lowered, FIELD_ALIASES["zone"]))
    return division == TOTAL_SENTINEL or zone == TOTAL_SENTINEL


def normalize(
    raw: RawRecord, query_type: Optional[str] = None, zone: Optional[str] = None
) -> Optional[CanonicalRecord]:
    """Map one raw row onto a CanonicalRecord; TOTAL summary rows yield None."""
    if is_summary_row(raw):
        return None

    lowered = {key.lower(): key for key in raw}
    fields: Dict[str, Optional[str]] = {
        name: _text(_lookup(raw, lowered, aliases)) for name, aliases in FIELD_ALIASES.items()
    }

    fields["zone"] = _text(zone) or fields["zone"] or fields["division"]
    fields["query_type"] = _text(query_type) or fields["query_type"] or UNKNOWN

    try:
        demand_date: Optional[date] = parse_date(
            _lookup(raw, lowered, FIELD_ALIASES["demand_date_text"])
        )
    except ParseError:
        demand_date = None

    return CanonicalRecord(
        **fields,
        demand_date=demand_date,
        month=demand_date.month - 1 if demand_date else None,
        year=demand_date.year if demand_date else None,
        rake_units=_units(
            _lookup(raw, lowered, FIELD_ALIASES["indent_units"]),
            _lookup(raw, lowered, FIELD_ALIASES["outstanding_units"]),
        ),
        rake_8w=_units(
            _lookup(raw, lowered, FIELD_ALIASES["indent_8w"]),
            _lookup(raw, lowered, FIELD_ALIASES["outstanding_8w"]),
        ),
    )


def normalize_rows(
    rows: Iterable[RawRecord], query_type: Optional[str] = None, zone: Optional[str] = None
) -> List[CanonicalRecord]:
    records: List[CanonicalRecord] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, dict):
            skipped += 1
            continue
        record = normalize(row, query_type=query_type, zone=zone)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.debug("Dropped %d summary or malformed rows (zone=%s, qry=%s)", skipped, zone, query_type)
    return records
