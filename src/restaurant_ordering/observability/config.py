"""OpenTelemetry and logging configuration.

Settings come from the environment:

- ``OTEL_SERVICE_NAME``: service name on spans, metrics and log lines
- ``OTEL_EXPORTER_OTLP_ENDPOINT``: collector base URL (OTLP over HTTP)
- ``OTEL_METRIC_EXPORT_INTERVAL_MS``: metric push interval
- ``OTEL_EXPORTERS_ENABLED``: set to "false" to keep telemetry in-process
- ``LOG_LEVEL``: root log level
"""

import logging
import os
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "ordering-svc"
SERVICE_VERSION = "1.0.0"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318"

# Libraries that log every AWS request at INFO/DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "urllib3")

# Routes excluded from FastAPI request spans
UNTRACED_URLS = "health"


def get_service_name() -> str:
    return os.getenv("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)


def get_service_resource() -> Resource:
    """Resource identifying this service in every span and metric."""
    return Resource.create(
        {
            "service.name": get_service_name(),
            "service.version": SERVICE_VERSION,
            "deployment.environment": os.getenv("ENVIRONMENT", "development"),
        }
    )


def otlp_endpoint() -> str:
    return os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT).rstrip("/")


def otlp_signal_url(signal: str) -> str:
    """Collector URL for one signal ("traces" or "metrics")."""
    return f"{otlp_endpoint()}/v1/{signal}"


def exporters_enabled(requested: bool) -> bool:
    """Whether telemetry should leave the process."""
    if os.getenv("ENVIRONMENT", "development") == "test":
        return False
    if os.getenv("OTEL_EXPORTERS_ENABLED", "true").lower() == "false":
        return False
    return requested


def build_tracer_provider(resource: Resource, export: bool) -> TracerProvider:
    provider = TracerProvider(resource=resource)
    if export:
        exporter = OTLPSpanExporter(endpoint=otlp_signal_url("traces"))
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def build_meter_provider(resource: Resource, export: bool) -> MeterProvider:
    if not export:
        return MeterProvider(resource=resource)

    interval_ms = int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL_MS", "60000"))
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=otlp_signal_url("metrics")),
        export_interval_millis=interval_ms,
    )
    return MeterProvider(resource=resource, metric_readers=[reader])


def setup_observability(app: Any = None, enable_exporters: bool = True) -> None:
    """Initialize OpenTelemetry tracing, metrics and auto-instrumentation.

    Args:
        app: Optional FastAPI application to instrument
        enable_exporters: Whether to ship telemetry to the OTLP collector
    """
    export = exporters_enabled(enable_exporters)
    resource = get_service_resource()

    trace.set_tracer_provider(build_tracer_provider(resource, export))
    metrics.set_meter_provider(build_meter_provider(resource, export))

    # DynamoDB and S3 calls both go through botocore
    BotocoreInstrumentor().instrument()

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)

    if export:
        logger.info(f"Telemetry exported to {otlp_endpoint()}")
    else:
        logger.info("Telemetry exporters disabled")


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger.

    Every line carries the service name so logs from the API and the
    EventBridge handler can be told apart.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL),
            overridden by the LOG_LEVEL environment variable
    """
    level_name = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        timestamp=True,
        static_fields={"service": get_service_name()},
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.info(f"Structured JSON logging configured at {level_name} level")
