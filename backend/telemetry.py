# telemetry.py — OpenTelemetry tracing for the sync API
"""
Spans for webhook reconciliation plus FastAPI / SQLAlchemy / HTTPX
instrumentation. Exports to an OTLP collector when
OTEL_EXPORTER_OTLP_ENDPOINT is set; otherwise the API's no-op tracer is used.
"""
import os
import logging

from opentelemetry import trace

logger = logging.getLogger("taskforge.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "taskforge-sync")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def setup_telemetry(app=None):
    """Register an exporting tracer provider and instrument the app.

    No-op without OTEL_EXPORTER_OTLP_ENDPOINT or without the ``telemetry``
    extra installed.
    """
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry export disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed — span export disabled")
        return None

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
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

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    except ImportError:
        logger.warning("opentelemetry-instrumentation-httpx not installed")

    logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT}")
    return provider


def get_tracer(name: str = "taskforge"):
    return trace.get_tracer(name, SERVICE_VERSION)
