from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

_PIPELINE_TRACER = "loyaltymart_api.pipeline"
_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` as used by OTEL_EXPORTER_OTLP_HEADERS."""

    headers: dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _build_exporter(endpoint: str | None, headers: dict[str, str]) -> SpanExporter:
    if endpoint:
        return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)
    return ConsoleSpanExporter()


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
    otlp_endpoint: str | None = None,
    otlp_headers: str | None = None,
) -> None:
    """Instrument a service app, installing the process tracer provider once.

    Both services started in one process (tests, the smoke script) share the
    first provider; each app still gets its own FastAPI instrumentation.
    """

    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                ResourceAttributes.SERVICE_NAME: service_name,
                ResourceAttributes.SERVICE_VERSION: service_version,
                ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
            }
        )
        _provider = TracerProvider(resource=resource)
        exporter = _build_exporter(otlp_endpoint, parse_otlp_headers(otlp_headers))
        _provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider)


@contextmanager
def order_span(pool: str, order_number: str) -> Iterator[trace.Span]:
    """Span covering one order task inside a worker pool."""

    tracer = trace.get_tracer(_PIPELINE_TRACER)
    with tracer.start_as_current_span(
        "order.process",
        attributes={"loyaltymart.pool": pool, "loyaltymart.order_number": order_number},
    ) as span:
        yield span


__all__ = ["configure_tracing", "order_span", "parse_otlp_headers"]
