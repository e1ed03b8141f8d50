from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import settings


_provider: TracerProvider | None = None


def _ensure_provider(service_name: str) -> bool:
    global _provider
    if not settings.telemetry_enabled:
        return False
    if _provider is None:
        resource = Resource.create({"service.name": service_name, "deployment.environment": settings.env})
        _provider = TracerProvider(resource=resource)
        _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint}/v1/traces")))
        trace.set_tracer_provider(_provider)
    return True


def setup_worker_telemetry(service_name: str) -> None:
    """Workers build an engine per task; patching create_engine traces all of them."""
    if _ensure_provider(service_name):
        SQLAlchemyInstrumentor().instrument()


def setup_telemetry(app) -> None:
    from app.core.db import engine

    if not _ensure_provider(settings.service_name):
        return
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
