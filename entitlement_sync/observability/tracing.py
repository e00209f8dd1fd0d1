"""
Distributed Tracing with OpenTelemetry.

Spans cover HTTP requests, SQL queries and each reconciliation pass. With
tracing disabled every helper here is a no-op and spans come from the
default non-recording provider.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode
from sqlalchemy.ext.asyncio import AsyncEngine

from entitlement_sync.config import settings

TRACER_NAME = "entitlement_sync.reconciliation"

AttributeValue = str | int | float | bool


def setup_tracing() -> None:
    """Install an OTLP-exporting tracer provider when TRACING_ENABLED is set."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {SERVICE_NAME: settings.service_name, SERVICE_VERSION: settings.api_version}
        )
    )
    exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: FastAPI) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: AsyncEngine) -> None:
    # The instrumentor hooks the sync engine underneath the async wrapper
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def _attribute(value: Any) -> AttributeValue:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run the block inside a new current span.

    Usage:
        with trace_operation("reconciliation_pass", fresh_remote=True) as span:
            span.set_attribute("records", 2)

    None-valued attributes are skipped. An exception escaping the block marks
    the span as failed and is re-raised unchanged.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        operation_name,
        attributes={k: _attribute(v) for k, v in attributes.items() if v is not None},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
