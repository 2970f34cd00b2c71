"""Observability utilities: Langfuse traces and OpenTelemetry spans.

This module centralizes lightweight observability features:
- configure_tracing: installs an OpenTelemetry tracer provider once, with a
  console exporter when OTEL_CONSOLE_EXPORT is enabled.
- span: context manager around an OpenTelemetry span. Without a configured
  provider the OpenTelemetry API hands out non-recording spans.
- Tracer/Trace: a minimal Langfuse wrapper that is a no-op unless all Langfuse
  settings are present.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from langfuse import Langfuse
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from postchat.config import Settings

logger = logging.getLogger(__name__)

_otel_inited: bool = False


def configure_tracing(settings: Settings) -> None:
    """Initialize the OpenTelemetry tracer provider.

    Sets the global tracer provider once per process.
    """
    global _otel_inited
    if _otel_inited:
        return
    tp = TracerProvider()
    if settings.OTEL_CONSOLE_EXPORT:
        tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)
    _otel_inited = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
    """Lightweight context manager for an OpenTelemetry span."""
    tracer = trace.get_tracer("postchat")
    with tracer.start_as_current_span(name) as otel_span:
        for k, v in (attributes or {}).items():
            otel_span.set_attribute(k, v)
        yield


class Trace:
    """Minimal wrapper for a Langfuse trace with no-op methods when disabled."""

    def __init__(self, client: Optional[Langfuse], name: str, input: Optional[Dict[str, Any]] = None, model: str = ""):
        self.name = name
        self.model = model
        self._trace = None
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {})
            except Exception as exc:
                logger.debug("Langfuse trace %s not started: %s", name, exc)
                self._trace = None

    @property
    def enabled(self) -> bool:
        return self._trace is not None

    def generation(self, name: str, prompt: str, output: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record a generation with input/output text and optional metadata."""
        if self._trace is None:
            return
        try:
            self._trace.generation(
                name=name,
                input=prompt,
                output=output,
                metadata=metadata or {},
                model=self.model,
            )
        except Exception as exc:
            logger.debug("Langfuse generation %s dropped: %s", name, exc)

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        """Finalize the trace with an optional output payload."""
        if self._trace is None:
            return
        try:
            self._trace.update(output=output or {})
        except Exception as exc:
            logger.debug("Langfuse trace %s not finalized: %s", self.name, exc)


class Tracer:
    """Creates Trace objects bound to one Langfuse client (or none)."""

    def __init__(self, settings: Settings):
        self.model = settings.AI_MODEL
        self._client: Optional[Langfuse] = None
        if settings.langfuse_enabled:
            self._client = Langfuse(
                host=settings.LANGFUSE_HOST,
                public_key=settings.LANGFUSE_PUBLIC_KEY,
                secret_key=settings.LANGFUSE_SECRET_KEY,
            )

    def trace(self, name: str, input: Optional[Dict[str, Any]] = None) -> Trace:
        return Trace(self._client, name, input=input, model=self.model)
