"""FastAPI backend for traffic-light.

Serves group traffic-light status, per-entity check results and DORA metric
series. The check registry is built once at startup and shared across
requests; configuration errors in it abort startup.
"""

import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from traffic_light.config import get_settings
from traffic_light.dora.aggregator import MetricAggregator
from traffic_light.dora.source import SqliteDoraSource
from traffic_light.errors import ConfigurationError, NotFoundError, TrafficLightError
from traffic_light.facts import store
from traffic_light.models import EntityRef, Granularity, MetricKind
from traffic_light.observability.metrics import (
    APP_INFO,
    COMPONENT_HEALTHY,
    REQUEST_DURATION,
    REQUESTS_IN_PROGRESS,
    REQUESTS_TOTAL,
)
from traffic_light.rules.checker import FactChecker, check_result_to_json, store_lookup
from traffic_light.rules.dynamic import DynamicThresholdChecker
from traffic_light.rules.loader import build_dynamic_registry, build_registry
from traffic_light.status.signals import Signal, group_status
from traffic_light.status.thresholds import ThresholdResolver

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class GroupStatusResponse(BaseModel):
    """Response body for GET /checks/{group_name}."""

    status: str
    reason: str
    sample_count: int


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    checks_registered: int
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load checks and wire collaborators once at startup."""
    settings = get_settings()
    APP_INFO.info({"version": APP_VERSION})

    try:
        registry = build_registry(settings.checks_file)
        dynamic_registry = build_dynamic_registry(settings.checks_file)
    except TrafficLightError:
        logger.exception("Failed to load check definitions at startup")
        raise

    app.state.registry = registry
    app.state.dynamic_registry = dynamic_registry
    app.state.fact_checker = FactChecker(registry, store_lookup(settings.fact_store_db_path))
    app.state.threshold_resolver = ThresholdResolver()
    app.state.dynamic_checker = DynamicThresholdChecker(
        dynamic_registry, store_lookup(settings.fact_store_db_path), app.state.threshold_resolver
    )
    app.state.metric_aggregator = (
        MetricAggregator(SqliteDoraSource(settings.dora_db_path)) if settings.dora_db_path else None
    )
    logger.info("traffic-light ready with %d checks and %d dynamic checks", len(registry), len(dynamic_registry))
    yield
    logger.info("Shutting down traffic-light")


app = FastAPI(title="Traffic Light", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: ARG001
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


@app.exception_handler(ValueError)
async def _bad_value(request: Request, exc: ValueError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.exception("Configuration error serving %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@contextmanager
def _instrumented(endpoint: str) -> Iterator[None]:
    """Record request count, duration and in-flight gauge for ``endpoint``."""
    REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).inc()
    start = time.monotonic()
    status = "error"
    try:
        yield
        status = "success"
    finally:
        REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).dec()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/checks")
async def list_checks(request: Request) -> list[dict[str, object]]:
    """Registered check definitions in registration order."""
    return [check.to_dict() for check in request.app.state.registry.list()]


@app.get("/checks/{group_name}", response_model=GroupStatusResponse)
async def get_group_status(
    request: Request,
    group_name: str,
    signal: Signal = Signal.DEPENDABOT,
) -> GroupStatusResponse:
    """Aggregated traffic-light color for the components of a group."""
    with _instrumented("/checks/{group_name}"):
        status = await group_status(
            group_name,
            signal,
            resolver=request.app.state.threshold_resolver,
            db_path=get_settings().fact_store_db_path,
        )
    return GroupStatusResponse(status=status.color.value, reason=status.reason, sample_count=status.sample_count)


@app.get("/entities/{kind}/{namespace}/{name}/checks")
async def run_entity_checks(
    request: Request,
    kind: str,
    namespace: str,
    name: str,
    check_id: list[str] | None = Query(default=None),
) -> list[dict[str, object]]:
    """Run checks for one entity; all registered checks unless ``check_id`` is given."""
    entity = EntityRef(kind.lower(), namespace, name)
    with _instrumented("/entities/{kind}/{namespace}/{name}/checks"):
        results = await request.app.state.fact_checker.run_checks(entity, check_id)
    return [check_result_to_json(result) for result in results]


@app.get("/dynamic-checks")
async def list_dynamic_checks(request: Request) -> list[dict[str, object]]:
    """Registered dynamic threshold checks in registration order."""
    return [check.to_dict() for check in request.app.state.dynamic_registry.list()]


@app.get("/entities/{kind}/{namespace}/{name}/dynamic-checks")
async def run_entity_dynamic_checks(
    request: Request,
    kind: str,
    namespace: str,
    name: str,
    check_id: list[str] | None = Query(default=None),
) -> list[dict[str, object]]:
    """Run dynamic threshold checks for one entity against its system's annotations."""
    entity = EntityRef(kind.lower(), namespace, name)
    with _instrumented("/entities/{kind}/{namespace}/{name}/dynamic-checks"):
        results = await request.app.state.dynamic_checker.run_checks(entity, check_id)
    return [check_result_to_json(result) for result in results]


def _metric_aggregator(request: Request) -> MetricAggregator:
    aggregator: MetricAggregator | None = request.app.state.metric_aggregator
    if aggregator is None:
        msg = "DORA metrics are not configured (DORA_DB_PATH is empty)"
        raise ConfigurationError(msg)
    return aggregator


@app.get("/metrics/{kind}/{granularity}")
async def get_metric(
    request: Request,
    kind: MetricKind,
    granularity: Granularity,
    from_time: datetime = Query(alias="from"),
    to_time: datetime = Query(alias="to"),
    group: list[str] | None = Query(default=None),
) -> list[dict[str, object]]:
    """DORA metric series as ``[{key, value}]`` ascending by period key."""
    with _instrumented("/metrics/{kind}/{granularity}"):
        points = await _metric_aggregator(request).get_metric(kind, granularity, group or [], from_time, to_time)
    return [point.model_dump(by_alias=True) for point in points]


@app.get("/groups")
async def list_groups(request: Request) -> list[str]:
    """Project names known to the DORA database."""
    return await _metric_aggregator(request).list_groups()


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check health of the service and its dependencies."""
    settings = get_settings()
    components: list[ComponentHealth] = []

    # --- Catalog ---
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(f"{settings.catalog_url.rstrip('/')}/healthcheck")
            if resp.status_code == 200:
                components.append(ComponentHealth(name="catalog", status="healthy"))
            else:
                components.append(
                    ComponentHealth(
                        name="catalog",
                        status="unhealthy",
                        detail=f"HTTP {resp.status_code}",
                    )
                )
    except httpx.HTTPError as exc:
        components.append(ComponentHealth(name="catalog", status="unhealthy", detail=str(exc)))

    # --- Fact store ---
    try:
        conn = store.get_connection(settings.fact_store_db_path)
        conn.close()
        components.append(ComponentHealth(name="fact_store", status="healthy"))
    except (sqlite3.Error, ValueError) as exc:
        components.append(ComponentHealth(name="fact_store", status="unhealthy", detail=str(exc)))

    # --- DORA database (optional) ---
    if request.app.state.metric_aggregator is not None:
        try:
            await request.app.state.metric_aggregator.list_groups()
            components.append(ComponentHealth(name="dora_db", status="healthy"))
        except sqlite3.Error as exc:
            components.append(ComponentHealth(name="dora_db", status="unhealthy", detail=str(exc)))

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, checks_registered=len(request.app.state.registry), components=components)
