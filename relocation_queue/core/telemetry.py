from __future__ import annotations

from dataclasses import dataclass
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from relocation_queue.core.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [trace=%(trace_id)s span=%(span_id)s] %(message)s"


@dataclass(slots=True)
class TelemetryRuntime:
    provider: TracerProvider | None = None
    instrumentor: HTTPXClientInstrumentor | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


class TraceContextFilter(logging.Filter):
    """Stamp records with the ids of the span they were logged under."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        return True


def configure_logging(level: str | int = logging.INFO) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
    for handler in root.handlers:
        if not any(isinstance(existing, TraceContextFilter) for existing in handler.filters):
            handler.addFilter(TraceContextFilter())


def build_tracer_provider(settings: Settings) -> TracerProvider:
    """Provider describing this deployment: which document and backends it serves."""
    attributes: dict[str, str] = {
        SERVICE_NAME: settings.otel_service_name,
        DEPLOYMENT_ENVIRONMENT: settings.environment,
        "queue.storage_backend": settings.storage_backend,
        "queue.lock_backend": settings.lock_backend,
        "queue.table": settings.queue_table,
    }
    if settings.spreadsheet_id:
        attributes["queue.document_id"] = settings.spreadsheet_id

    provider = TracerProvider(
        resource=Resource.create(attributes),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=parse_otlp_headers(settings.otel_exporter_otlp_headers) or None,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        logger.info("no OTLP endpoint configured; spans for %s stay in-process", settings.otel_service_name)
    return provider


def setup_telemetry(settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime()

    provider = build_tracer_provider(settings)
    trace.set_tracer_provider(provider)
    # Sheets reads and writes plus webhook posts all go through httpx.
    instrumentor = HTTPXClientInstrumentor()
    instrumentor.instrument(tracer_provider=provider)
    return TelemetryRuntime(provider=provider, instrumentor=instrumentor)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.instrumentor is not None:
        runtime.instrumentor.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """``key=value,key2=value2`` as accepted by OTEL_EXPORTER_OTLP_HEADERS."""
    if not raw:
        return {}
    headers: dict[str, str] = {}
    for pair in raw.split(","):
        key, separator, value = pair.partition("=")
        if separator and key.strip():
            headers[key.strip()] = value.strip()
    return headers
