"""OpenTelemetry setup helpers used by each FastAPI app.

Inbound requests are traced by FastAPI auto-instrumentation; outbound calls to
the payment gateway and the mail API open their own spans via `outbound_span`.
With tracing disabled the global no-op tracer provider is left in place, so
spans cost nothing.
"""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from admitpay.common.config import settings

EXCLUDED_URLS = "/health,/metrics"


def setup_tracing(service_name: str) -> None:
    """Create and register a tracer provider with OTLP HTTP exporter."""

    if not settings.tracing_enabled:
        return
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation, skipping probe and scrape routes."""

    if not settings.tracing_enabled:
        return
    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)


@contextmanager
def outbound_span(name: str, attributes: dict | None = None):
    """Client span around one external call; exceptions mark the span as failed."""

    tracer = trace.get_tracer("admitpay")
    with tracer.start_as_current_span(name, kind=trace.SpanKind.CLIENT) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
