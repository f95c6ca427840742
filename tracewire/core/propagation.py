"""Trace context propagation across process boundaries.

Uses the W3C Trace Context format through OpenTelemetry's propagator:

    traceparent: 00-<32 hex trace id>-<16 hex span id>-<2 hex flags>
    tracestate:  tw=<16 hex parent span id>

The parent span id is carried in ``tracestate`` so that a context survives a
full inject/extract round trip.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    TraceFlags,
    get_current_span,
    set_span_in_context,
)
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from opentelemetry.trace.span import TraceState

from . import context as ambient
from .ids import format_span_id, parse_span_id
from .types import TraceContext

logger = logging.getLogger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"
PARENT_STATE_KEY = "tw"


class W3CTraceContextPropagator:
    """Encodes and decodes a TraceContext as W3C trace context headers."""

    def __init__(self) -> None:
        self._propagator = TraceContextTextMapPropagator()

    def __repr__(self) -> str:
        return "W3CTraceContextPropagator()"

    @property
    def fields(self) -> set[str]:
        return {TRACEPARENT_HEADER, TRACESTATE_HEADER}

    def inject(self, context: TraceContext) -> dict[str, str]:
        trace_state = TraceState()
        if context.parent_span_id is not None:
            trace_state = trace_state.add(PARENT_STATE_KEY, format_span_id(context.parent_span_id))

        span_context = SpanContext(
            trace_id=context.trace_id,
            span_id=context.span_id,
            is_remote=False,
            trace_flags=TraceFlags(TraceFlags.SAMPLED if context.sampled else TraceFlags.DEFAULT),
            trace_state=trace_state,
        )
        carrier: dict[str, str] = {}
        self._propagator.inject(carrier, context=set_span_in_context(NonRecordingSpan(span_context)))
        return carrier

    def extract(self, carrier: Mapping[str, str]) -> TraceContext | None:
        try:
            normalized = {
                str(key).lower(): value for key, value in carrier.items() if isinstance(value, str)
            }
            if TRACEPARENT_HEADER not in normalized:
                return None

            otel_context = self._propagator.extract(normalized)
            span_context = get_current_span(otel_context).get_span_context()
            if not span_context.is_valid:
                logger.debug(f"Ignoring malformed traceparent: {normalized[TRACEPARENT_HEADER]!r}")
                return None

            parent_span_id = None
            parent_value = span_context.trace_state.get(PARENT_STATE_KEY)
            if parent_value is not None:
                parent_span_id = parse_span_id(parent_value)

            return TraceContext(
                trace_id=span_context.trace_id,
                span_id=span_context.span_id,
                parent_span_id=parent_span_id,
                sampled=span_context.trace_flags.sampled,
            )
        except Exception as e:
            # Propagation must never crash the caller
            logger.debug(f"Failed to extract trace context: {e}")
            return None


_global_propagator: W3CTraceContextPropagator = W3CTraceContextPropagator()
_propagator_lock = threading.Lock()


def set_global_propagator(propagator: W3CTraceContextPropagator) -> None:
    """Install the process-wide propagator."""
    global _global_propagator
    with _propagator_lock:
        _global_propagator = propagator


def get_global_propagator() -> W3CTraceContextPropagator:
    return _global_propagator


def inject(context: TraceContext | None = None) -> dict[str, str]:
    """
    Encode a trace context into header-style key/value pairs.

    Args:
        context: Context to encode (default: the ambient context)

    Returns:
        The headers, or an empty dict if there is no context
    """
    if context is None:
        context = ambient.current()
    if context is None:
        return {}
    return _global_propagator.inject(context)


def extract(carrier: Mapping[str, str]) -> TraceContext | None:
    """Decode a trace context from header-style key/value pairs. Returns None on malformed input."""
    return _global_propagator.extract(carrier)
