"""BidEval observability module: OpenTelemetry tracing."""

from bideval.observability.tracing import configure_tracing, get_current_trace_id, operation_span

__all__ = ["configure_tracing", "get_current_trace_id", "operation_span"]
