"""OpenTelemetry setup for the sync service.

One trace should cover a whole sync workflow: the HTTP trigger (FastAPI),
provider calls (spans from @traced on the adapters), database upserts
(SQLAlchemy) and lock/progress traffic (Redis). Exporter is OTLP gRPC in
deployed environments and console during development.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from sqlalchemy.ext.asyncio import AsyncEngine

if TYPE_CHECKING:
    from mailsync.core.config import Settings

logger = logging.getLogger(__name__)

# Health probes are not traced.
_EXCLUDED_URLS = "/api/v1/health,/api/v1/health/ready"


class SyncTelemetry:
    """Tracer provider plus the instrumentations the sync service needs."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.tracer_provider: TracerProvider | None = None

    def _exporter(self) -> SpanExporter | None:
        kind = self.settings.telemetry_exporter
        endpoint = self.settings.telemetry_otlp_endpoint
        if kind == "none":
            return None
        if kind == "otlp":
            if endpoint:
                logger.info("Exporting sync traces to %s", endpoint)
                return OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
            logger.warning("TELEMETRY_EXPORTER=otlp without TELEMETRY_OTLP_ENDPOINT, using console")
        return ConsoleSpanExporter()

    def start(self) -> TracerProvider | None:
        """Install the global tracer provider. Returns None when telemetry is off or fails."""
        if not self.settings.telemetry_enabled:
            logger.info("Telemetry disabled")
            return None
        resource = Resource(
            attributes={
                SERVICE_NAME: self.settings.app_name,
                SERVICE_VERSION: self.settings.app_version,
                "deployment.environment": self.settings.telemetry_environment,
                "mailsync.sync.global_concurrency": self.settings.sync_global_concurrency,
            }
        )
        try:
            provider = TracerProvider(
                resource=resource, sampler=TraceIdRatioBased(self.settings.telemetry_sample_rate)
            )
            exporter = self._exporter()
            if exporter is not None:
                provider.add_span_processor(BatchSpanProcessor(exporter))
            trace.set_tracer_provider(provider)
        except Exception:
            logger.exception("Failed to initialize telemetry; continuing without traces")
            return None
        self.tracer_provider = provider
        logger.info(
            "Telemetry started (exporter=%s, sample_rate=%s)",
            self.settings.telemetry_exporter,
            self.settings.telemetry_sample_rate,
        )
        return provider

    def instrument(self, app: FastAPI, engine: AsyncEngine | None = None) -> None:
        """Instrument HTTP, logging, and (when configured) the DB engine and Redis."""
        if self.tracer_provider is None:
            return
        FastAPIInstrumentor.instrument_app(
            app, tracer_provider=self.tracer_provider, excluded_urls=_EXCLUDED_URLS
        )
        LoggingInstrumentor().instrument(tracer_provider=self.tracer_provider, set_logging_format=False)
        if engine is not None:
            SQLAlchemyInstrumentor().instrument(
                engine=engine.sync_engine, tracer_provider=self.tracer_provider
            )
        if self.settings.redis_enabled:
            RedisInstrumentor().instrument(tracer_provider=self.tracer_provider)

    def shutdown(self) -> None:
        """Flush pending spans."""
        if self.tracer_provider is None:
            return
        try:
            self.tracer_provider.shutdown()
        except Exception:
            logger.exception("Error flushing spans on shutdown")
        self.tracer_provider = None


_telemetry: SyncTelemetry | None = None
_telemetry_lock = threading.RLock()


def get_telemetry() -> SyncTelemetry | None:
    with _telemetry_lock:
        return _telemetry


def set_telemetry(telemetry: SyncTelemetry | None) -> None:
    """Set once at startup, cleared on shutdown."""
    global _telemetry
    with _telemetry_lock:
        _telemetry = telemetry
