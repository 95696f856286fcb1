"""OpenTelemetry tracing helpers.

The session opens spans through :func:`get_tracer`.  Until the OpenTelemetry
SDK is configured the API hands back no-op tracers, so instrumentation costs
nothing unless a host opts in with :func:`configure_telemetry` (requires the
``otel`` extra: ``pip install mcpc[otel]``).
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace

# Span attribute keys
ATTR_SESSION_ID = "mcpc.session.id"
ATTR_PROTOCOL_VERSION = "mcpc.protocol_version"
ATTR_METHOD = "mcpc.method"
ATTR_REQUEST_ID = "mcpc.request.id"
ATTR_CAPABILITY_KIND = "mcpc.capability.kind"
ATTR_CAPABILITY_COUNT = "mcpc.capability.count"
ATTR_TOOL_NAME = "mcpc.tool.name"
ATTR_TOOL_OUTCOME = "mcpc.tool.outcome"
ATTR_SERVER_NAME = "mcpc.server.name"

_INSTRUMENTATION_NAME = "mcpc"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a tracer for *name* (no-op until the SDK is configured)."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def configure_telemetry(
    *,
    service_name: str = "mcpc",
    export_to_console: bool = False,
    otlp_endpoint: str | None = None,
) -> None:
    """Install an OpenTelemetry SDK tracer provider.

    Parameters
    ----------
    service_name:
        The ``service.name`` resource attribute.
    export_to_console:
        If ``True``, export spans as JSON to stdout.
    otlp_endpoint:
        If set, export spans via OTLP/gRPC to this endpoint.

    Raises
    ------
    ImportError
        If the ``opentelemetry-sdk`` package is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
    except ImportError as exc:
        msg = (
            "opentelemetry-sdk is required for configure_telemetry(). "
            "Install it with: pip install mcpc[otel]"
        )
        raise ImportError(msg) from exc

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if export_to_console:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    if otlp_endpoint:
        _add_otlp_exporter(provider, BatchSpanProcessor, otlp_endpoint)

    trace.set_tracer_provider(provider)


def _add_otlp_exporter(provider: Any, processor_cls: Any, endpoint: str) -> None:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError as exc:
        msg = (
            "opentelemetry-exporter-otlp is required for OTLP export. "
            "Install it with: pip install mcpc[otel]"
        )
        raise ImportError(msg) from exc

    provider.add_span_processor(processor_cls(OTLPSpanExporter(endpoint=endpoint)))
