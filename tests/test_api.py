import time

import pytest
from fastapi.testclient import TestClient

from railway_demand import main
from railway_demand.service import RailwayDataService

ZONES = ["CR", "WR"]
QUERY_TYPES = ["MATURED_INDENTS", "ODR_RK_OTSG"]


@pytest.fixture
def service(monkeypatch, fake_source, fast_policy):
    for zone in ZONES:
        for query_type in QUERY_TYPES:
            fake_source.rows_for(zone, query_type)
    service = RailwayDataService(fake_source, ZONES, QUERY_TYPES, policy=fast_policy)
    monkeypatch.setattr(main, "service", service)
    return service


@pytest.fixture
def client(service):
    return TestClient(main.app)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_fetch_then_query(client):
    r = client.post("/data/fetch")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    assert body["result"]["total_count"] == 8
    assert "records" not in body["result"]

    r = client.get("/aggregations/zone", params={"zone": "CR"})
    assert r.status_code == 200
    assert r.json()["result"] == [{"zone": "CR", "orders": 4, "units": 16}]

    r = client.get("/aggregations/consignors", params={"limit": 2})
    assert len(r.json()["result"]) == 2

    r = client.get("/dashboard", params={"month": "Mar"})
    dashboard = r.json()["dashboard"]
    assert dashboard["summary"]["total_orders"] == 8
    assert len(dashboard["time_distribution"]) == 24

    r = client.get("/filters/options")
    assert r.json()["options"]["zones"] == ZONES


def test_fetch_selected_zones(client):
    r = client.post("/data/fetch", json={"zones": ["WR"], "query_types": ["ODR_RK_OTSG"]})
    assert r.status_code == 200
    assert r.json()["result"]["total_partitions"] == 1

    r = client.post("/data/fetch", json={"query_types": ["MATURED_INDENTS"]})
    assert r.json()["result"]["total_partitions"] == 2

    r = client.post("/data/fetch", json={"zones": ["XX"]})
    assert r.status_code == 400


def test_bad_queries(client):
    client.post("/data/fetch")
    assert client.get("/aggregations/nope").status_code == 404
    assert client.get("/aggregations/zone", params={"limit": 2}).status_code == 400
    assert client.get("/aggregations/zone", params={"month": "Foo"}).status_code == 400
    assert client.get("/dashboard", params={"month": "13"}).status_code == 400


def test_cache_endpoints(client):
    client.post("/data/fetch")
    assert client.get("/cache").json() == {"cache": {"entries": 4, "records": 8}}

    r = client.delete("/cache")
    assert r.json() == {"cache": {"entries": 0, "records": 0}}


def test_cancel_when_idle(client):
    assert client.post("/data/cancel").json() == {"cancelled": False}


def test_status_and_refresh(client, fake_source):
    r = client.get("/data/status")
    assert r.json()["last_run"] is None

    client.post("/data/fetch")
    r = client.post("/data/refresh")
    assert r.json()["status"] == "success"
    assert set(fake_source.calls.values()) == {2}

    status = client.get("/data/status").json()
    assert status["fetching"] is False
    assert status["records"] == 8
    assert status["last_progress"]["percentage"] == 100


def test_async_fetch_runs_in_background(service):
    with TestClient(main.app) as client:
        r = client.post("/data/fetch", params={"async_mode": True})
        assert r.json() == {"status": "scheduled"}

        for _ in range(100):
            status = client.get("/data/status").json()
            if status["last_run"] is not None:
                break
            time.sleep(0.01)

        assert status["last_run"]["status"] == "success"
        assert status["records"] == 8


def test_second_background_fetch_is_refused(service, fake_source):
    fake_source.hold("CR", "MATURED_INDENTS")
    with TestClient(main.app) as client:
        assert client.post("/data/fetch", params={"async_mode": True}).status_code == 200

        r = client.post("/data/fetch", params={"async_mode": True})
        assert r.status_code == 409
        assert client.delete("/cache").status_code == 409

        assert client.post("/data/cancel").json() == {"cancelled": True}
        for _ in range(100):
            if not main._background:
                break
            time.sleep(0.01)

        assert client.get("/data/status").json()["last_run"]["status"] == "cancelled"


def test_background_failure_is_logged(service, monkeypatch):
    failures = []

    async def broken_fetch():
        raise RuntimeError("scheduler down")

    monkeypatch.setattr(service, "fetch_all", broken_fetch)
    monkeypatch.setattr(main.logger, "error", lambda *args, **kwargs: failures.append((args, kwargs)))

    with TestClient(main.app) as client:
        assert client.post("/data/fetch", params={"async_mode": True}).json() == {"status": "scheduled"}
        for _ in range(100):
            if failures:
                break
            time.sleep(0.01)

        assert client.get("/data/status").json()["fetching"] is False

    assert len(failures) == 1
    _, kwargs = failures[0]
    assert isinstance(kwargs["exc_info"], RuntimeError)
    assert not main._background
