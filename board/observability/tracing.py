"""
Taskflow OpenTelemetry Setup

- Spans around gate decisions, commits and advisory calls
- OTLP export when an endpoint is configured, otherwise spans stay in-process
"""
from __future__ import annotations
from typing import Optional
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


def setup_otel(
    service_name: str = "taskflow",
    endpoint: Optional[str] = None,
    processor: Optional[SpanProcessor] = None,
) -> trace.Tracer:
    """Install a tracer provider and return a tracer for the service.

    ``processor`` lets tests attach an in-memory exporter.
    """
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        # The OTLP exporter ships separately from the SDK.
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    if processor is not None:
        provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
