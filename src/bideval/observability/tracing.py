"""OpenTelemetry tracing configuration for BidEval.

Environment Variables:
    BIDEVAL_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    BIDEVAL_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    BIDEVAL_OTEL_SERVICE_NAME: Service name for spans (default: "bideval")
    BIDEVAL_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "otlp")
    BIDEVAL_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    BIDEVAL_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter for tests

Span attributes carry identifiers and statuses only; never API keys,
webhook secrets, score justifications or request bodies.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and BIDEVAL_REQUIRE_OTEL=1."""


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def _get_env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing for BidEval.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If BIDEVAL_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    enabled = _get_env_bool("BIDEVAL_OTEL_ENABLED", False)
    require_otel = _get_env_bool("BIDEVAL_REQUIRE_OTEL", False)
    test_capture = _get_env_bool("BIDEVAL_OTEL_TEST_CAPTURE", False)

    if not enabled:
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (BIDEVAL_OTEL_ENABLED not set)")
        return False

    # The global provider can only be set once per process
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )

        service_name = _get_env_str("BIDEVAL_OTEL_SERVICE_NAME", "bideval")
        exporter_type = _get_env_str("BIDEVAL_OTEL_EXPORTER", "otlp")
        endpoint = _get_env_str("BIDEVAL_OTEL_EXPORTER_OTLP_ENDPOINT", "")

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

            kwargs: dict[str, Any] = {"endpoint": endpoint} if endpoint else {}
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**kwargs)))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            exporter_type if not test_capture else "in-memory",
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application when tracing is enabled."""
    if not _get_env_bool("BIDEVAL_OTEL_ENABLED", False):
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


@contextmanager
def operation_span(
    tracer_name: str, span_name: str, attributes: dict[str, Any] | None = None
) -> Iterator[trace.Span]:
    """Run a block inside a span, recording any exception on it.

    None-valued attributes are dropped; lists are joined with commas.
    """
    tracer = trace.get_tracer(tracer_name)
    with tracer.start_as_current_span(span_name) as span:
        set_span_attributes(attributes or {})
        try:
            yield span
        except Exception as e:
            span.set_attribute("bideval.error_code", getattr(e, "code", type(e).__name__))
            span.set_status(trace.StatusCode.ERROR, type(e).__name__)
            raise


def get_current_trace_id() -> str | None:
    """Get the current trace ID for logging correlation."""
    ctx = trace.get_current_span().get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format(ctx.trace_id, "032x")


def set_span_attributes(attributes: dict[str, Any]) -> None:
    """Set attributes on the current span."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, list):
            span.set_attribute(key, ",".join(str(v) for v in value))
        elif isinstance(value, bool | int | float):
            span.set_attribute(key, value)
        else:
            span.set_attribute(key, str(value))


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    """Clear captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Reset configuration state (for testing).

    The global TracerProvider cannot be replaced once set, so the test
    exporter is kept and only its spans are cleared.
    """
    global _is_configured
    clear_test_spans()
    _is_configured = False
