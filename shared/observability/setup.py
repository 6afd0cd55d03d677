import logging
import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

# OpenTelemetry
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from shared.config.settings import Settings

# The global tracer provider can only be installed once per process
_tracer_provider: TracerProvider | None = None


def add_otel_ids(logger, log_method, event_dict):
    """Structlog processor: stamp trace/span ids so a log line can be found from its trace."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def configure_logging(level: str = "INFO", service_name: str | None = None):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    if service_name:
        structlog.contextvars.bind_contextvars(service=service_name)


def configure_tracing(app: FastAPI, service_name: str, otlp_endpoint: str):
    global _tracer_provider
    if _tracer_provider is None:
        _tracer_provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        # Export to Jaeger via OTLP gRPC
        _tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        trace.set_tracer_provider(_tracer_provider)
        # Outgoing payment-provider and email calls become child spans of the request
        HTTPXClientInstrumentor().instrument()

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_tracer_provider)


def configure_metrics(app: FastAPI):
    # HTTP latency and status codes, exposed at /metrics next to the ecomm_* domain counters
    Instrumentator(excluded_handlers=["/health", "/metrics"]).instrument(app).expose(app)


def setup_observability(app: FastAPI, service_name: str, settings: Settings):
    """
    Bootstraps Logging, Tracing, and Metrics for the storefront app.

    Logging is always configured; tracing and the /metrics endpoint only when
    ``settings.observability_enabled`` is set (tests and scripts turn it off).
    """
    configure_logging(settings.log_level, service_name)
    if not settings.observability_enabled:
        return
    configure_tracing(app, service_name, settings.otlp_endpoint)
    configure_metrics(app)
