"""Console layer: one formatted line per accepted event."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TextIO, override

from ..types import Level, StatusCode
from .base import Layer

if TYPE_CHECKING:
    from ..types import LogRecord, Span, TraceContext

logger = logging.getLogger(__name__)

_LEVEL_COLORS = {
    Level.TRACE: "\x1b[35m",
    Level.DEBUG: "\x1b[34m",
    Level.INFO: "\x1b[32m",
    Level.WARN: "\x1b[33m",
    Level.ERROR: "\x1b[31m",
}
_RESET = "\x1b[0m"
_DIM = "\x1b[2m"


def _format_timestamp(timestamp_ns: int) -> str:
    seconds, remainder_ns = divmod(timestamp_ns, 1_000_000_000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=remainder_ns // 1_000)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        return repr(text)
    return text


def _format_duration(duration_ns: int) -> str:
    if duration_ns >= 1_000_000_000:
        return f"{duration_ns / 1_000_000_000:.2f}s"
    if duration_ns >= 1_000_000:
        return f"{duration_ns / 1_000_000:.2f}ms"
    return f"{duration_ns / 1_000:.2f}µs"


class ConsoleLayer(Layer):
    """
    Writes accepted events to a text stream (standard error by default).

    Each line carries the UTC timestamp, level, target, message, structured
    fields and the trace context that was ambient when the event was emitted.
    The line is fully formatted before a single ``write`` call; no lock is
    held around the I/O.
    """

    name = "console"

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        ansi: bool = False,
        span_events: bool = False,
    ) -> None:
        self._stream = stream
        self._ansi = ansi
        self._span_events = span_events
        self._write_failed = False

    def __repr__(self) -> str:
        return f"ConsoleLayer(ansi={self._ansi}, span_events={self._span_events})"

    @property
    def stream(self) -> TextIO:
        # Resolved per write so a replaced sys.stderr is honoured
        return self._stream if self._stream is not None else sys.stderr

    @override
    def on_log_record(self, record: LogRecord) -> LogRecord | None:
        parts = [record.message]
        parts.extend(f"{key}={_format_value(value)}" for key, value in record.fields.items())
        if record.error_context is not None and not record.error_context.is_empty:
            parts.append(f"error_context=[{record.error_context}]")
        self._write(record.timestamp_ns, record.level, record.target, parts, record.context)
        return None

    @override
    def on_span_end(self, span: Span) -> None:
        if not self._span_events:
            return
        parts = [f"close {span.name}"]
        if span.duration_ns is not None:
            parts.append(f"time.busy={_format_duration(span.duration_ns)}")
        if span.status.code != StatusCode.UNSET:
            parts.append(f"status={span.status.code.name}")
        parts.extend(f"{key}={_format_value(value)}" for key, value in span.attributes.items())
        self._write(span.end_time_ns or span.start_time_ns, span.level, span.target, parts, span.context)

    def format_line(
        self,
        timestamp_ns: int,
        level: Level,
        target: str,
        parts: list[str],
        context: TraceContext | None,
    ) -> str:
        level_text = f"{level.name:>5}"
        timestamp = _format_timestamp(timestamp_ns)
        if self._ansi:
            level_text = f"{_LEVEL_COLORS[level]}{level_text}{_RESET}"
            timestamp = f"{_DIM}{timestamp}{_RESET}"

        line = f"{timestamp} {level_text} {target}: {' '.join(parts)}"
        if context is not None:
            line += f" trace_id={context.trace_id_hex} span_id={context.span_id_hex}"
        return line + "\n"

    def _write(
        self,
        timestamp_ns: int,
        level: Level,
        target: str,
        parts: list[str],
        context: TraceContext | None,
    ) -> None:
        line = self.format_line(timestamp_ns, level, target, parts, context)
        try:
            stream = self.stream
            stream.write(line)
            stream.flush()
        except (OSError, ValueError) as e:
            # A closed or broken sink must not take the host down
            if not self._write_failed:
                self._write_failed = True
                logger.warning(f"Console layer could not write to its stream: {e}")
