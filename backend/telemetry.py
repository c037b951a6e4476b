# telemetry.py — OpenTelemetry tracing for the AgileFlow API
"""
Tracing is exported over OTLP when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint, or without the `telemetry` extra installed, the
service runs uninstrumented.
"""
import os
import logging

logger = logging.getLogger("agileflow.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "agileflow-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def _instrument_outbound(provider) -> None:
    # Gateway calls and subscriber callbacks both go through httpx
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    except ImportError:
        logger.warning("opentelemetry-instrumentation-httpx not installed; outbound calls untraced")
        return
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)


def setup_telemetry(app=None):
    """Register a tracer provider and instrument FastAPI, SQLAlchemy and httpx.

    Returns the provider, or None when tracing is disabled.
    """
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    except ImportError:
        logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT is set but the telemetry extra is not installed")
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
        FastAPIInstrumentor.instrument_app(
            app,
            excluded_urls="health,webhooks/health",
            tracer_provider=provider,
        )

    from database import engine
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    _instrument_outbound(provider)

    logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT} as {SERVICE_NAME}")
    return provider
