"""OpenTelemetry tracing for uploads.

Each chunk request and each status poll runs in its own span, so one slow
upload can be broken down request by request. Without ``setup_tracing`` the
global no-op tracer is used and spans cost nothing.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from videohost.core.config import Settings, settings

logger = logging.getLogger(__name__)

TRACER_NAME = "videohost"

_provider: Optional[TracerProvider] = None


def setup_tracing(config: Settings = settings, console_export: bool = False) -> None:
    """Install a tracer provider described by ``config``.

    Args:
        config: Settings supplying service name, version and environment
        console_export: Print finished spans to stdout
    """
    global _provider

    resource = Resource.create({
        SERVICE_NAME: config.PROJECT_NAME,
        SERVICE_VERSION: config.VERSION,
        "deployment.environment": config.ENVIRONMENT,
    })
    _provider = TracerProvider(resource=resource)
    if console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    logger.info(f"Tracing initialized for {config.PROJECT_NAME} v{config.VERSION}")


def shutdown_tracing() -> None:
    """Flush pending spans and stop the tracer provider."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


@contextmanager
def create_span(name: str, attributes: Optional[dict] = None) -> Iterator[trace.Span]:
    """Run the enclosed block in a new span.

    Exceptions leaving the block are recorded on the span and mark it as
    failed before they propagate.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name, attributes=attributes or {}) as span:
        yield span


def add_span_attributes(attributes: dict) -> None:
    span = trace.get_current_span()
    for key, value in attributes.items():
        span.set_attribute(key, value)


def current_trace_ids() -> tuple[Optional[str], Optional[str]]:
    """Get the hex trace and span ids of the active span, if any."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")
