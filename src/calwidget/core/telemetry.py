"""OpenTelemetry initialization for the calendar widget."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

TRACER_NAME = "calwidget"

# True once the global TracerProvider has been installed; the provider can
# only be set once per process.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str = TRACER_NAME) -> trace.Tracer:
    """Initialize OpenTelemetry tracing for the process.

    When ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set, installs a TracerProvider
    with an OTLP gRPC exporter on the first call.  Otherwise the returned
    tracer is a no-op.

    Parameters
    ----------
    service_name:
        Reported as ``service.name`` on the resource.

    Returns
    -------
    trace.Tracer
        A real or no-op tracer depending on the environment.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.debug("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(TRACER_NAME)

    if _tracer_provider_installed:
        return trace.get_tracer(TRACER_NAME)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)

    return trace.get_tracer(TRACER_NAME)


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the current provider (useful for modules)."""
    return trace.get_tracer(name)
