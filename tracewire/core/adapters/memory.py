"""In-memory span adapter for testing and development."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, override

from .base import ExportResult, SpanExportAdapter

if TYPE_CHECKING:
    from ..types import ExportBatch, Span


class InMemorySpanAdapter(SpanExportAdapter):
    """
    Stores delivered batches in memory - useful as a fake collector.

    Batches arrive on the exporter's worker thread, so access is locked.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches: list[ExportBatch] = []

    def __repr__(self) -> str:
        return f"InMemorySpanAdapter(batches={self.batch_count})"

    @property
    @override
    def name(self) -> str:
        return "in-memory"

    @property
    def batch_count(self) -> int:
        with self._lock:
            return len(self._batches)

    def get_batches(self) -> list["ExportBatch"]:
        with self._lock:
            return list(self._batches)

    def get_all_spans(self) -> list["Span"]:
        with self._lock:
            return [span for batch in self._batches for span in batch.spans]

    def get_spans_by_name(self, name: str) -> list["Span"]:
        return [span for span in self.get_all_spans() if span.name == name]

    def clear(self) -> None:
        with self._lock:
            self._batches.clear()

    @override
    async def export_batch(self, batch: "ExportBatch") -> ExportResult:
        with self._lock:
            self._batches.append(batch)
        return ExportResult.success()
