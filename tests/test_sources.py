import asyncio

import pytest
from aiohttp import test_utils, web

from railway_demand.cache import PartitionCache
from railway_demand.errors import MalformedPayloadError, TransportError
from railway_demand.fetcher import PartitionFetcher
from railway_demand.normalizer import normalize_rows
from railway_demand.scheduler import BatchScheduler
from railway_demand.sources import FoisHttpSource, SimulatedSource, create_source


def call_upstream(handler, zone="CR", query_type="ODR_RK_OTSG"):
    """Run one FoisHttpSource request against a local aiohttp app."""

    async def scenario():
        app = web.Application()
        app.router.add_post("/SHY_OdrRasJSON", handler)
        async with test_utils.TestServer(app) as server:
            source = FoisHttpSource(str(server.make_url("/SHY_OdrRasJSON")))
            try:
                return await source.fetch_partition(zone, query_type)
            finally:
                await source.close()

    return asyncio.run(scenario())


def test_posts_form_and_returns_rows():
    seen = {}

    async def handler(request):
        seen.update(await request.post())
        seen["x-requested-with"] = request.headers.get("X-Requested-With")
        return web.json_response({"data": [{"dvsn": "BB"}, {"dvsn": "TOTAL"}]})

    rows = call_upstream(handler, zone="WR", query_type="MATURED_INDENTS")

    assert rows == [{"dvsn": "BB"}, {"dvsn": "TOTAL"}]
    assert seen["Optn"] == "ODROtsgDtls"
    assert seen["Qry"] == "MATURED_INDENTS"
    assert seen["Zone"] == "WR"
    assert seen["x-requested-with"] == "XMLHttpRequest"


def test_http_error_carries_status():
    async def handler(request):
        return web.Response(status=500, text="server down")

    with pytest.raises(TransportError) as excinfo:
        call_upstream(handler)
    assert excinfo.value.status == 500
    assert "server down" in str(excinfo.value)


def test_undecodable_body_is_malformed():
    async def handler(request):
        return web.Response(text="<html>maintenance</html>")

    with pytest.raises(MalformedPayloadError):
        call_upstream(handler)


@pytest.mark.parametrize("payload", [[1, 2], {"data": "oops"}])
def test_unexpected_shapes_are_malformed(payload):
    async def handler(request):
        return web.json_response(payload)

    with pytest.raises(MalformedPayloadError):
        call_upstream(handler)


def test_missing_data_means_no_rows():
    async def handler(request):
        return web.json_response({"status": "ok"})

    assert call_upstream(handler) == []


def test_simulated_source_includes_summary_row():
    source = SimulatedSource(rows_per_partition=5)

    rows = asyncio.run(source.fetch_partition("CR", "ODR_RK_OTSG"))

    assert len(rows) == 6
    assert rows[-1]["dvsn"] == "TOTAL"
    records = normalize_rows(rows, "ODR_RK_OTSG", "CR")
    assert len(records) == 5
    assert all(r.rake_units > 0 for r in records)
    assert source.stats() == {"CR-ODR_RK_OTSG": 6}


def test_simulated_partitions_are_stable_between_calls():
    source = SimulatedSource(rows_per_partition=3)
    source.add_to_partition("WR", "MATURED_INDENTS", {"dvsn": "ADI", "indtunit": "7"})

    first = asyncio.run(source.fetch_partition("WR", "MATURED_INDENTS"))
    second = asyncio.run(source.fetch_partition("WR", "MATURED_INDENTS"))

    assert first == second
    assert {"dvsn": "ADI", "indtunit": "7"} in first
    assert source.calls == 2


def test_create_source():
    assert isinstance(create_source("simulated", rows_per_partition=2), SimulatedSource)
    fois = create_source("FOIS", url="http://localhost/json")
    assert isinstance(fois, FoisHttpSource)
    assert fois.url == "http://localhost/json"
    with pytest.raises(ValueError):
        create_source("ftp")


def test_undecodable_error_body_fails_only_its_partition(fast_policy):
    async def handler(request):
        form = await request.post()
        if form["Zone"] == "WR":
            return web.Response(
                status=502, body=b"\xff\xfe bad gateway", content_type="text/plain", charset="utf-8"
            )
        return web.json_response({"data": [{"dvsn": "BB", "indtunit": "2"}]})

    async def scenario(events):
        app = web.Application()
        app.router.add_post("/SHY_OdrRasJSON", handler)
        async with test_utils.TestServer(app) as server:
            source = FoisHttpSource(str(server.make_url("/SHY_OdrRasJSON")))
            scheduler = BatchScheduler(PartitionFetcher(source, fast_policy), PartitionCache())
            try:
                return await scheduler.run_batch(["CR", "WR"], ["ODR_RK_OTSG"], events.append)
            finally:
                await source.close()

    events = []
    result = asyncio.run(scenario(events))

    assert result.total_count == 1
    assert len(events) == 2
    failed = [e for e in events if e.error]
    assert failed[0].zone == "WR"
    assert "502" in failed[0].error
    assert result.failed_partitions[0].zone == "WR"
