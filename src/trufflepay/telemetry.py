"""
OpenTelemetry tracing.

The gateway and ledger client open spans through ``tracer`` unconditionally;
until ``init_telemetry`` installs a provider those spans are no-ops.
"""

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = structlog.get_logger(__name__)

tracer = trace.get_tracer("trufflepay")


def init_telemetry(service_name: str, otlp_endpoint: str = "http://localhost:4317") -> None:
    """Install a tracer provider exporting to ``otlp_endpoint``."""
    service_name = service_name.lower().strip()
    if not service_name:
        raise ValueError("service_name must be provided for OpenTelemetry initialization")

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    try:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    except Exception as e:
        logger.warning("otlp_exporter_unavailable", endpoint=otlp_endpoint, error=str(e))
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
