"""
Main Application - FastAPI wiring for the entitlement sync service.

The ID token verifier, the session registry, the HTTP client for the backend
of record and the Google Play publisher are built once in the lifespan and
shared by every request through app.state.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from entitlement_sync.api.routes import router
from entitlement_sync.api.status_routes import router as status_router
from entitlement_sync.config import Settings, settings
from entitlement_sync.db.session import close_engines, get_engine, get_session_factory
from entitlement_sync.observability import get_logger, metrics, setup_logging, setup_tracing
from entitlement_sync.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from entitlement_sync.services.google_play_provider import (
    GooglePlayBillingProvider,
    build_android_publisher,
)
from entitlement_sync.services.id_token_verifier import GoogleIdTokenVerifier
from entitlement_sync.services.product_catalog import default_catalog
from entitlement_sync.services.reconciliation import InMemoryContentSink
from entitlement_sync.services.record_store import (
    EntitlementRecordStore,
    InMemoryEntitlementRecordStore,
    SqlEntitlementRecordStore,
)
from entitlement_sync.services.session import SessionRegistry

setup_logging()
setup_tracing()
logger = get_logger(__name__)


def build_record_store(config: Settings) -> EntitlementRecordStore:
    """Record store selected by RECORD_STORE_BACKEND."""
    if config.record_store_backend == "memory":
        logger.warning("record_store_in_memory", detail="Entitlements are lost on restart")
        return InMemoryEntitlementRecordStore()

    instrument_sqlalchemy(get_engine())
    return SqlEntitlementRecordStore(get_session_factory())


def build_session_registry(
    config: Settings, http_client: httpx.AsyncClient, publisher: Any
) -> SessionRegistry:
    """Wire the per-user sessions from explicit collaborators."""
    catalog = default_catalog()

    def provider_factory() -> GooglePlayBillingProvider:
        return GooglePlayBillingProvider(publisher, config.ANDROID_PACKAGE_NAME, catalog)

    return SessionRegistry(
        store=build_record_store(config),
        catalog=catalog,
        http_client=http_client,
        provider_factory=provider_factory,
        content_sink=InMemoryContentSink(max_entries=config.max_content_entries),
        ack_max_attempts=config.ack_max_attempts,
        ack_backoff_base_seconds=config.ack_backoff_base_seconds,
        ack_remembered_tokens=config.acknowledged_tokens_cache_size,
        max_sessions=config.max_user_sessions,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        record_store=settings.record_store_backend,
        tracing_enabled=settings.tracing_enabled,
    )

    async with httpx.AsyncClient(
        base_url=settings.backend_base_url.rstrip("/") + "/",
        timeout=settings.backend_timeout_seconds,
    ) as http_client:
        app.state.token_verifier = GoogleIdTokenVerifier(
            settings.valid_google_client_ids, max_cached=settings.id_token_cache_size
        )
        publisher = build_android_publisher(settings.GOOGLE_PLAY_SERVICE_ACCOUNT)
        app.state.session_registry = build_session_registry(settings, http_client, publisher)
        try:
            yield
        finally:
            logger.info("application_shutting_down")
            await close_engines()


def _route_template(request: Request) -> str:
    # Paths embed user ids, so label metrics by the matched route instead
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


async def observe_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request and record it under its route template."""
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", "unknown")
    in_progress = metrics.http_requests_in_progress.labels(method=request.method)
    in_progress.inc()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as exc:
        metrics.record_error(type(exc).__name__, "http_request")
        logger.exception(
            "request_failed",
            method=request.method,
            path=request.url.path,
            request_id=request_id,
        )
        raise
    finally:
        in_progress.dec()
        duration = time.perf_counter() - started
        metrics.record_http_request(_route_template(request), request.method, status_code, duration)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_seconds=round(duration, 4),
            request_id=request_id,
        )


def _validation_error_entry(error: Any) -> dict[str, Any]:
    entry = {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
    # ctx may carry the raised exception object
    if ctx := error.get("ctx"):
        entry["ctx"] = {key: str(value) for key, value in ctx.items()}
    return entry


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [_validation_error_entry(error) for error in exc.errors()]
    logger.warning("validation_error", path=request.url.path, method=request.method, errors=errors)
    return JSONResponse(status_code=422, content={"detail": errors})


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=settings.api_description,
        lifespan=lifespan,
    )
    application.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    application.middleware("http")(observe_request)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(router)
    application.include_router(status_router)

    @application.get("/")
    async def root() -> dict[str, str]:
        return {"service": settings.api_title, "version": settings.api_version, "status": "running"}

    @application.get("/metrics")
    async def metrics_endpoint() -> Response:
        """Prometheus text exposition, 404 when METRICS_ENABLED is off."""
        if not settings.metrics_enabled:
            return PlainTextResponse("", status_code=404)
        return PlainTextResponse(generate_latest())

    instrument_fastapi(application)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "entitlement_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
