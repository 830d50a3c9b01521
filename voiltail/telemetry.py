"""OpenTelemetry tracing for Voiltail.

Code always creates spans through the OpenTelemetry API. Until
setup_telemetry() installs an SDK tracer provider, which happens only when
OTEL_EXPORTER_OTLP_ENDPOINT is set, the API hands out non-recording spans.
"""

import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

TRACER_NAME = "voiltail"

_telemetry_enabled = False


def is_telemetry_enabled() -> bool:
    """Whether spans are being recorded and exported."""
    return _telemetry_enabled


def setup_telemetry(service_version: str = "0.0.0") -> bool:
    """Install an OTLP-exporting tracer provider if an endpoint is configured.

    Args:
        service_version: Reported as the service.version resource attribute.

    Returns:
        True if spans will be exported.
    """
    global _telemetry_enabled

    if _telemetry_enabled:
        return True

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("Tracing disabled: OTEL_EXPORTER_OTLP_ENDPOINT not set")
        return False

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    service_name = os.getenv("OTEL_SERVICE_NAME", "voiltail")
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": service_version})
    )
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _telemetry_enabled = True

    logger.info("Tracing enabled. Endpoint: %s, Service: %s", endpoint, service_name)
    return True


def get_tracer() -> Tracer:
    return trace.get_tracer(TRACER_NAME)


def record_span_error(span: Span, error: BaseException) -> None:
    """Attach an exception to a span and mark it failed."""
    if not span.is_recording():
        return
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


def instrument_app(app: FastAPI) -> None:
    """Trace incoming requests and outbound httpx calls."""
    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    logger.info("FastAPI and httpx instrumentation enabled")
