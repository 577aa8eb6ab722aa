# telemetry.py — Optional OpenTelemetry tracing for Tracklane
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint, or without the opentelemetry packages installed, every
helper here is a no-op so services can call span() unconditionally.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("tracklane.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "tracklane-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

_enabled = False


def setup_telemetry(app=None):
    """Register a tracer provider and instrument FastAPI and SQLAlchemy."""
    global _enabled
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None

    provider = TracerProvider(resource=Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed")

    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        SQLAlchemyInstrumentor().instrument(tracer_provider=provider)
    except ImportError:
        logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")

    _enabled = True
    logger.info(f"OpenTelemetry initialised -> {OTLP_ENDPOINT}")
    return provider


@contextmanager
def span(name: str, **attributes):
    """Wrap a block in a span when tracing is on; otherwise do nothing."""
    if not _enabled:
        yield None
        return
    from opentelemetry import trace
    tracer = trace.get_tracer("tracklane", SERVICE_VERSION)
    with tracer.start_as_current_span(name) as current:
        for key, value in attributes.items():
            if value is not None:
                current.set_attribute(f"tracklane.{key}", str(value))
        yield current
