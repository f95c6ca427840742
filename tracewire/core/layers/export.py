"""Export layer: hands closed spans to the batch exporter."""

from __future__ import annotations

from typing import TYPE_CHECKING, override

from ..context import current_span
from ..types import Level, StatusCode
from .base import Layer

if TYPE_CHECKING:
    from ..batch_processor import BatchExporter
    from ..types import LogRecord, Span


class ExportLayer(Layer):
    """
    Forwards closed, sampled spans to the BatchExporter.

    The handoff is an in-memory enqueue that never waits on delivery. Log
    records emitted inside an open span are also recorded on that span as
    events, and an error-level record marks the span as failed.
    """

    name = "export"

    def __init__(self, exporter: BatchExporter, record_log_events: bool = True) -> None:
        self._exporter = exporter
        self._record_log_events = record_log_events

    def __repr__(self) -> str:
        return f"ExportLayer(exporter={self._exporter!r})"

    @override
    def on_span_end(self, span: Span) -> None:
        if not span.context.sampled:
            return
        self._exporter.enqueue(span)

    @override
    def on_log_record(self, record: LogRecord) -> LogRecord | None:
        if not self._record_log_events:
            return None

        span = current_span()
        if span is None or span.is_ended or record.context != span.context:
            return None

        attributes = {"level": record.level.name, "target": record.target}
        attributes.update(record.fields)
        if record.error_context is not None and not record.error_context.is_empty:
            attributes["error_context"] = str(record.error_context)
        span.add_event(record.message, attributes, timestamp_ns=record.timestamp_ns)

        if record.level >= Level.ERROR:
            span.set_status(StatusCode.ERROR, record.message)
        return None
