import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Awaitable, Callable, List, Optional, Set

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from .config import settings
from .errors import FetchInProgressError, UnknownReducerError
from .log import setup_logging
from .models import BatchResult, FilterCriteria
from .service import RailwayDataService
from .sources import create_source


class FetchRequest(BaseModel):
    zones: Optional[List[str]] = None
    query_types: Optional[List[str]] = None


setup_logging(settings.log_level)

source = create_source(
    settings.source_backend,
    url=settings.upstream_url,
    option=settings.upstream_option,
    rows_per_partition=settings.simulated_rows_per_partition,
)
service = RailwayDataService(
    source,
    zones=settings.zones,
    query_types=settings.query_types,
    policy=settings.fetch_policy(),
    refresh_bypasses_cache=settings.refresh_bypasses_cache,
    top_n=settings.top_n,
    route_top_n=settings.route_top_n,
)

logger = logging.getLogger(__name__)

_background: Set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    service.cancel()
    close = getattr(source, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title="Railway Demand ETL",
    version="0.1.0",
    description="Batched fetch and aggregation of railway logistics demand records.",
    lifespan=lifespan,
)


def filter_criteria(
    zone: Optional[str] = None,
    month: Optional[str] = None,
    query_type: Optional[str] = None,
    commodity: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> FilterCriteria:
    return FilterCriteria(
        zone=zone,
        month=month,
        query_type=query_type,
        commodity=commodity,
        start_date=start_date,
        end_date=end_date,
    )


def _finish_background(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background fetch failed: %s", exc, exc_info=exc)


def _summarize(result: BatchResult) -> dict:
    return result.model_dump(exclude={"records"})


async def _start(run: Callable[[], Awaitable[BatchResult]], async_mode: bool) -> dict:
    if service.is_fetching or _background:
        raise HTTPException(status_code=409, detail="A fetch is already running")
    if async_mode:
        task = asyncio.create_task(run())
        _background.add(task)
        task.add_done_callback(_finish_background)
        return {"status": "scheduled"}
    try:
        result = await run()
    except FetchInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"status": result.status.value, "result": _summarize(result)}


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/data/fetch")
async def fetch_data(request: Optional[FetchRequest] = None, async_mode: bool = False) -> dict:
    request = request or FetchRequest()
    if not request.zones and not request.query_types:
        return await _start(service.fetch_all, async_mode)

    zones = request.zones or service.zones
    try:
        service.validate_selection(zones, request.query_types or [])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return await _start(
        lambda: service.fetch_selected_zones(zones, request.query_types), async_mode
    )


@app.post("/data/refresh")
async def refresh_data(async_mode: bool = False) -> dict:
    return await _start(service.refresh, async_mode)


@app.post("/data/cancel")
async def cancel_fetch() -> dict:
    return {"cancelled": service.cancel()}


@app.get("/data/status")
async def data_status() -> dict:
    return {
        "fetching": service.is_fetching,
        "records": len(service.records),
        "last_run": _summarize(service.last_result) if service.last_result else None,
        "last_progress": service.last_progress,
    }


@app.get("/cache")
async def cache_stats() -> dict:
    return {"cache": service.cache_size()}


@app.delete("/cache")
async def clear_cache() -> dict:
    try:
        service.clear_cache()
    except FetchInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"cache": service.cache_size()}


@app.get("/filters/options")
async def options() -> dict:
    return {"options": service.filter_options()}


@app.get("/aggregations/{name}")
async def aggregation(
    name: str,
    limit: Optional[int] = None,
    criteria: FilterCriteria = Depends(filter_criteria),
) -> dict:
    extra = {"limit": limit} if limit is not None else {}
    try:
        result = service.aggregate(name, criteria, **extra)
    except UnknownReducerError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"name": name, "result": result}


@app.get("/dashboard")
async def dashboard(criteria: FilterCriteria = Depends(filter_criteria)) -> dict:
    try:
        view = service.dashboard(criteria)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"dashboard": view}
