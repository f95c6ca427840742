"""Diagnostic counters for the export path.

These counters are the side channel through which delivery problems are
surfaced; nothing here feeds back into the event pipeline.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


@dataclass
class ExportMetrics:
    """Counters for spans and batches handled by the exporter."""

    spans_enqueued: int = 0
    spans_exported: int = 0
    spans_dropped: int = 0
    spans_failed: int = 0
    spans_discarded_after_shutdown: int = 0
    spans_abandoned: int = 0
    batches_exported: int = 0
    batches_dropped: int = 0
    batches_failed: int = 0
    batches_abandoned: int = 0
    retry_attempts: int = 0
    export_latency_sum_ms: float = 0.0
    export_count: int = 0

    @property
    def average_export_latency_ms(self) -> float:
        if self.export_count == 0:
            return 0.0
        return self.export_latency_sum_ms / self.export_count


@dataclass
class DiagnosticsSnapshot:
    """Point-in-time copy of all diagnostic counters."""

    export: ExportMetrics = field(default_factory=ExportMetrics)
    layer_errors: int = 0
    pending_batches: int = 0
    peak_pending_batches: int = 0
    uptime_seconds: float = 0.0


class ExporterDiagnostics:
    """Thread-safe collector for exporter and layer diagnostics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._export = ExportMetrics()
        self._layer_errors = 0
        self._pending_batches = 0
        self._peak_pending_batches = 0
        self._start_time = time.monotonic()

    def record_span_enqueued(self) -> None:
        with self._lock:
            self._export.spans_enqueued += 1

    def record_batch_exported(self, span_count: int, latency_ms: float) -> None:
        with self._lock:
            self._export.spans_exported += span_count
            self._export.batches_exported += 1
            self._export.export_latency_sum_ms += latency_ms
            self._export.export_count += 1

    def record_batch_dropped(self, span_count: int) -> None:
        with self._lock:
            self._export.spans_dropped += span_count
            self._export.batches_dropped += 1

    def record_batch_failed(self, span_count: int) -> None:
        with self._lock:
            self._export.spans_failed += span_count
            self._export.batches_failed += 1

    def record_batches_abandoned(self, batch_count: int, span_count: int) -> None:
        with self._lock:
            self._export.spans_abandoned += span_count
            self._export.batches_abandoned += batch_count

    def record_retry(self) -> None:
        with self._lock:
            self._export.retry_attempts += 1

    def record_discarded_after_shutdown(self, count: int = 1) -> None:
        with self._lock:
            self._export.spans_discarded_after_shutdown += count

    def record_layer_error(self) -> None:
        with self._lock:
            self._layer_errors += 1

    def update_pending_batches(self, count: int) -> None:
        with self._lock:
            self._pending_batches = count
            self._peak_pending_batches = max(self._peak_pending_batches, count)

    def get_snapshot(self) -> DiagnosticsSnapshot:
        with self._lock:
            return DiagnosticsSnapshot(
                export=ExportMetrics(**vars(self._export)),
                layer_errors=self._layer_errors,
                pending_batches=self._pending_batches,
                peak_pending_batches=self._peak_pending_batches,
                uptime_seconds=time.monotonic() - self._start_time,
            )

    def reset(self) -> None:
        with self._lock:
            self._export = ExportMetrics()
            self._layer_errors = 0
            self._pending_batches = 0
            self._peak_pending_batches = 0
            self._start_time = time.monotonic()
