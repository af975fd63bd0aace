"""OpenTelemetry wiring: OTLP/HTTP export plus FastAPI request spans."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from tradein.common.config import settings

tracer = trace.get_tracer("tradein")


def setup_tracing(service_name: str, endpoint: str | None = None) -> TracerProvider:
    """Register a tracer provider; spans are only exported when an OTLP endpoint is configured."""

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    endpoint = settings.otel_exporter_otlp_endpoint if endpoint is None else endpoint
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app)


def current_trace_id() -> str:
    """Hex id of the active span's trace, or "" outside a recorded span."""

    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return ""
    return format(context.trace_id, "032x")
