"""Trace and span identifier generation and formatting."""

from __future__ import annotations

from opentelemetry.sdk.trace.id_generator import RandomIdGenerator
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID, format_span_id, format_trace_id

TRACE_ID_HEX_LENGTH = 32
SPAN_ID_HEX_LENGTH = 16
MAX_TRACE_ID = (1 << 128) - 1
MAX_SPAN_ID = (1 << 64) - 1

# Ids are not security sensitive; the SDK generator draws from `random`.
_generator = RandomIdGenerator()


def generate_trace_id() -> int:
    """Generate a random, non-zero 128-bit trace id."""
    return _generator.generate_trace_id()


def generate_span_id() -> int:
    """Generate a random, non-zero 64-bit span id."""
    return _generator.generate_span_id()


def is_valid_trace_id(trace_id: int) -> bool:
    return INVALID_TRACE_ID < trace_id <= MAX_TRACE_ID


def is_valid_span_id(span_id: int) -> bool:
    return INVALID_SPAN_ID < span_id <= MAX_SPAN_ID


def parse_span_id(value: str) -> int | None:
    """Parse a 16-character lowercase hex span id, or return None."""
    if len(value) != SPAN_ID_HEX_LENGTH:
        return None
    try:
        span_id = int(value, 16)
    except ValueError:
        return None
    return span_id if is_valid_span_id(span_id) else None


__all__ = [
    "format_span_id",
    "format_trace_id",
    "generate_span_id",
    "generate_trace_id",
    "is_valid_span_id",
    "is_valid_trace_id",
    "parse_span_id",
]
