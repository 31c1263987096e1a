"""
Distributed Tracing Configuration

Sets up and configures OpenTelemetry for distributed tracing.
"""
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from loguru import logger

from eduguard.core.constants import APP_NAME, APP_VERSION

_provider: Optional[TracerProvider] = None


def setup_tracing(otlp_endpoint: Optional[str] = None) -> TracerProvider:
    """
    Initializes the OpenTelemetry tracer provider.

    Spans are only exported when an OTLP endpoint is given
    (e.g. "http://localhost:4318/v1/traces"); otherwise they are
    recorded and dropped. Calling it again returns the existing provider.
    """
    global _provider
    if _provider is not None:
        return _provider

    resource = Resource(attributes={
        "service.name": APP_NAME,
        "service.version": APP_VERSION,
    })

    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"OpenTelemetry tracing initialized (exporting to {otlp_endpoint}).")
    else:
        logger.info("OpenTelemetry tracing initialized (exporter disabled).")

    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str):
    """Gets a tracer instance for a specific module."""
    return trace.get_tracer(name)
