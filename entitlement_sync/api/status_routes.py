"""
Status API routes - Health checks for entitlement sync dependencies.

Unauthenticated probes of the database, the backend of record and Google Play,
aggregated into a single status for status pages.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from entitlement_sync.config import settings
from entitlement_sync.db.session import get_db

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

STATUS_CACHE_KEY = "status"
STATUS_CACHE_SECONDS = 10
_status_cache: dict[str, tuple[float, "ServiceStatusResponse"]] = {}


class StatusLevel(str, Enum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class DependencyStatus(BaseModel):
    """Result of probing one dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Aggregated health of the service and its dependencies."""

    service: str
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    dependencies: dict[str, DependencyStatus]


def _reachable(start: float, timestamp: str) -> DependencyStatus:
    latency_ms = int((time.perf_counter() - start) * 1000)
    degraded = latency_ms > DEGRADED_LATENCY_THRESHOLD
    return DependencyStatus(
        status=StatusLevel.DEGRADED if degraded else StatusLevel.OPERATIONAL,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if degraded else None,
    )


async def check_postgresql() -> DependencyStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    if settings.record_store_backend != "sql":
        return DependencyStatus(
            status=StatusLevel.OPERATIONAL,
            latency_ms=0,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
        return _reachable(start, timestamp)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return DependencyStatus(
            status=StatusLevel.OUTAGE,
            last_check=timestamp,
            message="Connection failed",
        )


async def _check_http(name: str, url: str, expected: tuple[int, ...]) -> DependencyStatus:
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        return DependencyStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("health_check_failed", dependency=name, error=str(e))
        return DependencyStatus(
            status=StatusLevel.OUTAGE,
            last_check=timestamp,
            message="Connection failed",
        )

    if response.status_code in expected:
        return _reachable(start, timestamp)
    return DependencyStatus(
        status=StatusLevel.DEGRADED,
        latency_ms=int((time.perf_counter() - start) * 1000),
        last_check=timestamp,
        message=f"Unexpected status: {response.status_code}",
    )


async def check_backend_of_record() -> DependencyStatus:
    """Check that the backend of record answers (auth errors still mean reachable)."""
    return await _check_http(
        "backend_of_record", settings.backend_base_url, (200, 204, 401, 403, 404)
    )


async def check_google_play() -> DependencyStatus:
    """Check Google Play Developer API reachability."""
    return await _check_http(
        "google_play",
        "https://androidpublisher.googleapis.com/$discovery/rest?version=v3",
        (200,),
    )


_SEVERITY = {StatusLevel.OPERATIONAL: 0, StatusLevel.DEGRADED: 1, StatusLevel.OUTAGE: 2}


def calculate_overall_status(dependencies: dict[str, DependencyStatus]) -> StatusLevel:
    """The worst dependency status is the service status."""
    return max(
        (d.status for d in dependencies.values()),
        key=_SEVERITY.__getitem__,
        default=StatusLevel.OPERATIONAL,
    )


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """
    Check the database, the backend of record and Google Play concurrently.

    No auth. A result is reused for STATUS_CACHE_SECONDS so status pages
    polling this endpoint do not multiply outbound checks.
    """
    cached = _status_cache.get(STATUS_CACHE_KEY)
    if cached is not None and time.monotonic() - cached[0] < STATUS_CACHE_SECONDS:
        return cached[1]

    checks = {
        "postgresql": check_postgresql(),
        "backend_of_record": check_backend_of_record(),
        "google_play": check_google_play(),
    }
    results = await asyncio.gather(*checks.values())
    dependencies = dict(zip(checks, results, strict=True))

    response = ServiceStatusResponse(
        service=settings.service_name,
        status=calculate_overall_status(dependencies),
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.api_version,
        dependencies=dependencies,
    )
    _status_cache[STATUS_CACHE_KEY] = (time.monotonic(), response)
    if response.status != StatusLevel.OPERATIONAL:
        logger.warning("service_status_not_operational", status=response.status.value)
    return response
