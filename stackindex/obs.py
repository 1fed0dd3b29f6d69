"""Observability utilities providing OpenTelemetry spans around delivery work.

This module centralizes lightweight tracing:
- span(): context manager that opens an OpenTelemetry span with attributes and
  records exceptions raised inside it.
- A console exporter is installed once, and only when OTEL_CONSOLE_EXPORT is
  enabled; otherwise the globally configured (by default no-op) tracer provider is
  used, so users can plug in an OTLP exporter externally.

Environment/config dependencies are read from stackindex.config.settings.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from stackindex.config import settings

_otel_inited: bool = False


def _init_otel() -> None:
    """Install a tracer provider with console export when enabled in settings.

    Sets the global tracer provider at most once.
    """
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    if not settings.OTEL_CONSOLE_EXPORT:
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
    """
    Lightweight context manager for an OpenTelemetry span.
    Exceptions propagate; they are recorded on the span first.
    """
    _init_otel()
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name, attributes=attributes or {}) as otel_span:
        yield otel_span
