"""
Pytest configuration and shared fixtures
"""

import asyncio
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Tuple, Union

import pytest

from railway_demand.config import FetchPolicy
from railway_demand.errors import TransportError
from railway_demand.models import CanonicalRecord


class FakeSource:
    """Scriptable upstream: rows, an exception, or a gate to wait on per partition."""

    def __init__(self) -> None:
        self.responses: Dict[Tuple[str, str], Union[List[Dict[str, Any]], Exception]] = {}
        self.gates: Dict[Tuple[str, str], asyncio.Event] = {}
        self.calls: Counter = Counter()
        self.order: List[Tuple[str, str]] = []

    def rows_for(self, zone: str, query_type: str, count: int = 2) -> List[Dict[str, Any]]:
        rows = [
            {
                "dvsn": f"{zone}DIV",
                "sttnfrom": "ORIG",
                "dmnddate": "2024-03-05",
                "dmndtime": "10:15",
                "csnr": f"{zone}-{query_type}-{i}",
                "cmdt": "COAL",
                "dstn": "DEST",
                "indtunit": "4",
            }
            for i in range(count)
        ]
        self.responses[(zone, query_type)] = rows
        return rows

    def fail(self, zone: str, query_type: str, message: str = "boom") -> None:
        self.responses[(zone, query_type)] = TransportError(message, status=500)

    def hold(self, zone: str, query_type: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[(zone, query_type)] = gate
        return gate

    async def fetch_partition(self, zone: str, query_type: str) -> List[Dict[str, Any]]:
        key = (zone, query_type)
        self.calls[key] += 1
        self.order.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        response = self.responses.get(key, [])
        if isinstance(response, Exception):
            raise response
        return [dict(row) for row in response]


def build_record(**fields: Any) -> CanonicalRecord:
    fields.setdefault("query_type", "ODR_RK_OTSG")
    return CanonicalRecord(**fields)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fast_policy() -> FetchPolicy:
    return FetchPolicy(batch_size=3, batch_delay=0, retry_attempts=3, retry_delay=0, request_timeout=5)


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def sample_records() -> List[CanonicalRecord]:
    """Small mixed record set across two zones and both main schemas"""
    return [
        build_record(
            zone="CR",
            division="BB",
            consignor="ACC",
            consignee="JSW",
            commodity="COAL",
            destination="PUNE",
            origin_station="KLMG",
            indent_type="BOXN",
            priority_code="A",
            demand_time="08:30",
            demand_date=date(2024, 1, 10),
            month=0,
            year=2024,
            rake_units=10,
        ),
        build_record(
            zone="CR",
            division="BB",
            consignor="ACC",
            consignee="JSW",
            commodity=None,
            rake_commodity="COAL",
            destination="PUNE",
            origin_station="KLMG",
            indent_type="BCN",
            priority_code="B",
            demand_time="08:45",
            demand_date=date(2024, 2, 1),
            month=1,
            year=2024,
            rake_units=20,
        ),
        build_record(
            zone="WR",
            division="ADI",
            consignor="UTCL",
            consignee=None,
            commodity="CEMENT",
            destination="SURAT",
            origin_station="ADI",
            indent_type="BCN",
            priority_code=None,
            demand_time="23:05",
            demand_date=date(2023, 12, 31),
            month=11,
            year=2023,
            rake_units=5,
            query_type="MATURED_INDENTS",
        ),
        build_record(
            zone=None,
            division=None,
            consignor=None,
            commodity=None,
            destination=None,
            demand_time="not-a-time",
            query_type="MATURED_INDENTS",
        ),
    ]
