import asyncio
import logging
import random
import string
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

import aiohttp

from .errors import MalformedPayloadError, TransportError
from .models import RawRecord

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "Origin": "https://www.fois.indianrail.gov.in",
    "Referer": "https://www.fois.indianrail.gov.in/RailSAHAY/Home.jsp",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "X-Requested-With": "XMLHttpRequest",
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Accept-Language": "en-US,en;q=0.9",
}


class PartitionSource(Protocol):
    async def fetch_partition(self, zone: str, query_type: str) -> List[RawRecord]:
        ...


class FoisHttpSource:
    """Upstream FOIS demand endpoint, one form POST per partition."""

    def __init__(
        self,
        url: str,
        option: str = "ODROtsgDtls",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self.option = option
        self.headers = dict(DEFAULT_HEADERS if headers is None else headers)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_partition(self, zone: str, query_type: str) -> List[RawRecord]:
        payload = {"Optn": self.option, "Qry": query_type, "Zone": zone}
        logger.debug("POST %s zone=%s qry=%s", self.url, zone, query_type)
        session = self._get_session()
        try:
            async with session.post(self.url, data=payload) as resp:
                if resp.status != 200:
                    body = await resp.text(errors="replace")
                    raise TransportError(
                        f"HTTP error {resp.status}: {body[:200]}", status=resp.status
                    )
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    raise MalformedPayloadError(f"Undecodable payload: {exc}") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError("Request timed out") from exc

        if not isinstance(data, dict):
            raise MalformedPayloadError(f"Expected a JSON object, got {type(data).__name__}")
        rows = data.get("data")
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise MalformedPayloadError("'data' is not a list of rows")
        return rows


def _random_code(length: int = 4) -> str:
    return "".join(random.choices(string.ascii_uppercase, k=length))


class SimulatedPartition:
    """In-memory stand-in for one zone/query-type slice of the upstream."""

    commodities = ["COAL", "CEMENT", "FERTILIZER", "FOODGRAINS", "IRON ORE", "CONTAINER"]
    rake_types = ["BOXN", "BCN", "BTPN", "BOBRN", "BLC"]
    priorities = ["A", "B", "C", "D", "E"]

    def __init__(self, zone: str, query_type: str):
        self.zone = zone
        self.query_type = query_type
        self._rows: List[RawRecord] = []

    def seed(self, count: int) -> None:
        for _ in range(count):
            self.insert_random()
        self._rows.append({"dvsn": "TOTAL", "indtunit": str(count)})

    def insert_random(self) -> RawRecord:
        demanded_at = datetime.now() - timedelta(
            days=random.randint(0, 365), minutes=random.randint(0, 1439)
        )
        units = random.randint(1, 60)
        outstanding = self.query_type != "MATURED_INDENTS"
        row = {
            "dvsn": f"{self.zone}{random.randint(1, 4)}",
            "sttnfrom": _random_code(),
            "dmndno": str(random.randint(100000, 999999)),
            "dmnddate": demanded_at.strftime("%d-%m-%Y"),
            "dmndtime": demanded_at.strftime("%H:%M"),
            "csnr": f"{_random_code(3)} LTD",
            "cnsg": f"{_random_code(3)} CORP",
            "cmdt": random.choice(self.commodities),
            "tt": random.choice(["L", "E"]),
            "pc": random.choice(self.priorities),
            "via": _random_code(3),
            "rakecmdt": random.choice(self.commodities),
            "dstn": _random_code(),
            "indttype": random.choice(self.rake_types),
            "indtunit": None if outstanding else str(units),
            "indt8w": None if outstanding else str(units * 2),
            "ostgunit": str(units) if outstanding else None,
            "ostg8w": str(units * 2) if outstanding else None,
        }
        self._rows.append(row)
        return row

    def add(self, payload: RawRecord) -> RawRecord:
        row = dict(payload)
        self._rows.append(row)
        return row

    def fetch(self) -> List[RawRecord]:
        return [dict(row) for row in self._rows]

    def __len__(self) -> int:
        return len(self._rows)


class SimulatedSource:
    """Collection of simulated partitions, seeded lazily on first request."""

    def __init__(self, rows_per_partition: int, latency: float = 0.0):
        self.rows_per_partition = rows_per_partition
        self.latency = latency
        self.partitions: Dict[Tuple[str, str], SimulatedPartition] = {}
        self.calls = 0

    def _partition(self, zone: str, query_type: str) -> SimulatedPartition:
        key = (zone, query_type)
        if key not in self.partitions:
            partition = SimulatedPartition(zone, query_type)
            partition.seed(self.rows_per_partition)
            self.partitions[key] = partition
        return self.partitions[key]

    async def fetch_partition(self, zone: str, query_type: str) -> List[RawRecord]:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        return self._partition(zone, query_type).fetch()

    def add_to_partition(self, zone: str, query_type: str, payload: RawRecord) -> RawRecord:
        return self._partition(zone, query_type).add(payload)

    def stats(self) -> Dict[str, int]:
        return {f"{zone}-{qry}": len(part) for (zone, qry), part in self.partitions.items()}


def create_source(backend: str, **options: Any) -> PartitionSource:
    backend = backend.lower()
    if backend == "simulated":
        return SimulatedSource(options.get("rows_per_partition", 25))
    if backend == "fois":
        return FoisHttpSource(options["url"], option=options.get("option", "ODROtsgDtls"))
    raise ValueError(f"Unknown source backend '{backend}'")
