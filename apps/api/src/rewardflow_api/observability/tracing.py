from __future__ import annotations

import os
from typing import Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.semconv.resource import ResourceAttributes

_CONFIGURED = False

tracer = trace.get_tracer("rewardflow_api.conditions")


def _parse_headers(raw: str | None) -> Dict[str, str] | None:
    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        key, separator, value = pair.partition("=")
        if not separator or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers or None


def _build_exporter() -> SpanExporter:
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        return OTLPSpanExporter(
            endpoint=endpoint,
            headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")),
        )
    return ConsoleSpanExporter()


def configure_tracing(
    app: FastAPI | None,
    *,
    service_name: str,
    service_version: str,
    environment: str,
) -> None:
    """Install the tracer provider once per process and instrument the app if given.

    Celery workers call this with ``app=None`` so evaluation spans emitted from
    queued events carry the same resource attributes as HTTP-triggered ones.
    """

    global _CONFIGURED

    if not _CONFIGURED:
        resource = Resource.create(
            {
                ResourceAttributes.SERVICE_NAME: service_name,
                ResourceAttributes.SERVICE_VERSION: service_version,
                ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
            }
        )
        tracer_provider = TracerProvider(resource=resource)
        tracer_provider.add_span_processor(BatchSpanProcessor(_build_exporter()))
        trace.set_tracer_provider(tracer_provider)
        LoggingInstrumentor().instrument(set_logging_format=False)
        _CONFIGURED = True

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())


__all__ = ["configure_tracing", "tracer"]
