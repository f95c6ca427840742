"""Batch exporter: buffers closed spans and ships them from a worker thread."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import ConfigurationError, ExportError
from .metrics import ExporterDiagnostics
from .resilience import RetryConfig, retry_async
from .types import ExportBatch

if TYPE_CHECKING:
    from .adapters.base import ExportResult, SpanExportAdapter
    from .types import Span

logger = logging.getLogger(__name__)


@dataclass
class BatchExporterConfig:
    """Configuration for the batch exporter."""

    # A batch is sealed once it holds this many spans
    max_batch_size: int = 512
    # ...or once this long has passed since its first span arrived
    max_batch_delay_seconds: float = 5.0
    # Sealed batches waiting for delivery; beyond this the oldest is dropped
    max_queued_batches: int = 64
    # Upper bound for delivering one batch to one adapter, retries included
    export_timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    def validate(self) -> None:
        if self.max_batch_size < 1:
            raise ConfigurationError("max_batch_size", "must be at least 1")
        if self.max_batch_delay_seconds <= 0:
            raise ConfigurationError("max_batch_delay", "must be positive")
        if self.max_queued_batches < 1:
            raise ConfigurationError("max_queued_batches", "must be at least 1")
        if self.export_timeout_seconds <= 0:
            raise ConfigurationError("export_timeout", "must be positive")
        if self.retry.max_attempts < 1:
            raise ConfigurationError("max_export_attempts", "must be at least 1")


class BatchExporter:
    """
    Accumulates closed spans into batches and delivers them asynchronously.

    - ``enqueue`` only appends under a short lock and never waits on delivery
    - A batch is sealed when it is full or when its delay has elapsed
    - Sealed batches wait in a bounded queue; when it overflows the oldest
      batch is dropped and counted (bounded memory over completeness)
    - A worker thread with its own event loop delivers each batch exactly once,
      retrying failures with exponential backoff, then discarding the batch
    - Delivery problems are reported through diagnostics and the ``tracewire``
      logger only; nothing is raised back to the code that emitted the spans
    """

    def __init__(
        self,
        adapters: list["SpanExportAdapter"],
        config: BatchExporterConfig | None = None,
        diagnostics: ExporterDiagnostics | None = None,
    ) -> None:
        """
        Initialize the exporter.

        Args:
            adapters: Adapters every batch is delivered to
            config: Optional configuration (uses defaults if not provided)
            diagnostics: Counter sink (a private one is created if not provided)
        """
        self._adapters = list(adapters)
        self._config = config or BatchExporterConfig()
        self._config.validate()
        self._diagnostics = diagnostics or ExporterDiagnostics()

        self._lock = threading.Lock()
        self._open_batch: list[Span] = []
        self._open_batch_started_at: float | None = None
        self._pending: deque[ExportBatch] = deque()
        self._next_sequence = 0
        self._flush_waiters: list[tuple[int, threading.Event]] = []
        self._drop_warned = False

        self._wake_event = threading.Event()
        self._shutdown_event = threading.Event()
        self._export_thread: threading.Thread | None = None
        self._thread_loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._stopped = False
        # Monotonic time after which stop() abandons undelivered batches
        self._stop_deadline: float | None = None
        self._worker_running = False
        self._adapter_shutdown_deferred = False

    def __repr__(self) -> str:
        return (
            f"BatchExporter(adapters={[a.name for a in self._adapters]}, "
            f"max_batch_size={self._config.max_batch_size})"
        )

    @property
    def config(self) -> BatchExporterConfig:
        return self._config

    @property
    def diagnostics(self) -> ExporterDiagnostics:
        return self._diagnostics

    @property
    def adapters(self) -> list["SpanExportAdapter"]:
        return list(self._adapters)

    @property
    def pending_batch_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def open_batch_size(self) -> int:
        with self._lock:
            return len(self._open_batch)

    @property
    def is_running(self) -> bool:
        return self._export_thread is not None and self._export_thread.is_alive()

    def start(self) -> None:
        """Start the background export thread."""
        if self._started:
            return

        self._started = True
        self._worker_running = True
        self._shutdown_event.clear()
        self._export_thread = threading.Thread(
            target=self._export_loop,
            daemon=True,
            name="tracewire-batch-exporter",
        )
        self._export_thread.start()
        logger.debug("BatchExporter started")

    def enqueue(self, span: "Span") -> bool:
        """
        Add a closed span to the open batch. Never blocks on delivery.

        Returns:
            True if the span was accepted, False if the exporter is stopped
        """
        with self._lock:
            if self._stopped:
                accepted = False
                dropped = None
                wake = False
            else:
                accepted = True
                self._open_batch.append(span)
                if self._open_batch_started_at is None:
                    self._open_batch_started_at = time.monotonic()
                    # A new deadline exists; let the worker recompute its timeout
                    wake = True
                else:
                    wake = False
                dropped = None
                if len(self._open_batch) >= self._config.max_batch_size:
                    dropped = self._seal_locked()
                    wake = True

        if not accepted:
            self._diagnostics.record_discarded_after_shutdown()
            return False

        self._diagnostics.record_span_enqueued()
        if dropped is not None:
            self._record_drop(dropped)
        if wake:
            self._wake_event.set()
        return True

    def force_flush(self, timeout: float | None = None) -> bool:
        """
        Seal the open batch and wait until every sealed batch has been offered
        to the adapters. Blocks the caller only, never the emitting path.

        Args:
            timeout: Maximum time to wait (default: export timeout)

        Returns:
            True if everything was flushed within the timeout
        """
        if threading.current_thread() is self._export_thread:
            # Waiting here would wait on ourselves
            logger.error("force_flush() called from the export worker; ignoring")
            return False

        if not self.is_running:
            self._drain_on_caller()
            return True

        waiter = threading.Event()
        with self._lock:
            dropped = self._seal_locked()
            self._flush_waiters.append((self._next_sequence, waiter))
        if dropped is not None:
            self._record_drop(dropped)
        self._wake_event.set()

        flushed = waiter.wait(timeout if timeout is not None else self._config.export_timeout_seconds)
        if not flushed:
            logger.warning("Timed out waiting for span export to flush")
        return flushed

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop accepting spans, deliver what is still buffered and stop the worker.

        Args:
            timeout: Upper bound for the whole stop (default: export timeout).
                Batches not delivered by then are abandoned and counted.
        """
        budget = timeout if timeout is not None else self._config.export_timeout_seconds
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._stop_deadline = time.monotonic() + max(0.0, budget)
            dropped = self._seal_locked()
        if dropped is not None:
            self._record_drop(dropped)

        thread = self._export_thread
        if thread is not None and thread.is_alive():
            self._shutdown_event.set()
            self._wake_event.set()
            thread.join(timeout=self._remaining_stop_time())
            if thread.is_alive():
                logger.warning("Export worker did not finish in time; draining remaining batches directly")

        # Whatever the worker could not reach is delivered here, still once per batch
        self._drain_on_caller()

        with self._lock:
            # An in-flight delivery still uses the adapters; the worker closes them when it returns
            deferred = self._adapter_shutdown_deferred = self._worker_running
        if not deferred:
            self._shutdown_adapters()

        self._started = False
        export = self._diagnostics.get_snapshot().export
        logger.debug(
            f"BatchExporter stopped. Exported {export.spans_exported} spans, "
            f"dropped {export.spans_dropped}, failed {export.spans_failed}, "
            f"abandoned {export.spans_abandoned}."
        )

    def _remaining_stop_time(self) -> float | None:
        deadline = self._stop_deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def _seal_locked(self) -> ExportBatch | None:
        """Seal the open batch into the pending queue. Returns a batch dropped for room, if any."""
        if not self._open_batch:
            return None

        batch = ExportBatch(spans=tuple(self._open_batch), sequence=self._next_sequence)
        self._next_sequence += 1
        self._open_batch = []
        self._open_batch_started_at = None
        self._pending.append(batch)

        if len(self._pending) > self._config.max_queued_batches:
            return self._pending.popleft()
        return None

    def _record_drop(self, batch: ExportBatch) -> None:
        self._diagnostics.record_batch_dropped(len(batch))
        if not self._drop_warned:
            self._drop_warned = True
            logger.warning(
                f"Export queue full ({self._config.max_queued_batches} batches), "
                f"dropping oldest batch of {len(batch)} spans"
            )
        else:
            logger.debug(f"Dropped batch {batch.sequence} ({len(batch)} spans)")

    def _time_until_deadline(self) -> float | None:
        with self._lock:
            if self._open_batch_started_at is None:
                return None
            elapsed = time.monotonic() - self._open_batch_started_at
            return max(0.0, self._config.max_batch_delay_seconds - elapsed)

    def _export_loop(self) -> None:
        """Background thread that seals due batches and delivers them."""
        self._thread_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._thread_loop)
        try:
            while True:
                self._wake_event.wait(timeout=self._time_until_deadline())
                # Cleared before draining so a wake-up during delivery is not lost
                self._wake_event.clear()

                shutting_down = self._shutdown_event.is_set()
                self._drain(self._thread_loop, seal_open=shutting_down)
                if shutting_down:
                    break
        except Exception as e:
            logger.error(f"Export worker stopped unexpectedly: {e}", exc_info=e)
        finally:
            with self._lock:
                self._worker_running = False
                shutdown_adapters = self._adapter_shutdown_deferred
            self._thread_loop.close()
            self._thread_loop = None
            if shutdown_adapters:
                self._shutdown_adapters()

    def _drain_on_caller(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            self._drain(loop, seal_open=True)
        finally:
            loop.close()

    def _drain(self, loop: asyncio.AbstractEventLoop, seal_open: bool) -> None:
        dropped = None
        with self._lock:
            due = (
                self._open_batch_started_at is not None
                and time.monotonic() - self._open_batch_started_at >= self._config.max_batch_delay_seconds
            )
            if seal_open or due:
                dropped = self._seal_locked()
        if dropped is not None:
            self._record_drop(dropped)

        while True:
            with self._lock:
                abandoned = self._abandon_if_past_deadline_locked()
                released = self._release_flush_waiters_locked()
                batch = self._pending.popleft() if self._pending else None
                pending_count = len(self._pending)
            if abandoned:
                self._record_abandoned(abandoned)
            for waiter in released:
                waiter.set()
            if batch is None:
                return
            self._diagnostics.update_pending_batches(pending_count)
            self._deliver(batch, loop)

    def _abandon_if_past_deadline_locked(self) -> list[ExportBatch]:
        if self._stop_deadline is None or time.monotonic() < self._stop_deadline or not self._pending:
            return []
        abandoned = list(self._pending)
        self._pending.clear()
        return abandoned

    def _record_abandoned(self, batches: list[ExportBatch]) -> None:
        span_count = sum(len(batch) for batch in batches)
        self._diagnostics.record_batches_abandoned(len(batches), span_count)
        self._diagnostics.update_pending_batches(0)
        logger.warning(
            f"Stop timeout reached, abandoning {len(batches)} undelivered batches ({span_count} spans)"
        )

    def _release_flush_waiters_locked(self) -> list[threading.Event]:
        # Every batch below this sequence has been delivered or dropped
        handled_below = self._pending[0].sequence if self._pending else self._next_sequence
        released = [waiter for target, waiter in self._flush_waiters if target <= handled_below]
        self._flush_waiters = [
            (target, waiter) for target, waiter in self._flush_waiters if target > handled_below
        ]
        return released

    def _deliver(self, batch: ExportBatch, loop: asyncio.AbstractEventLoop) -> None:
        started = time.monotonic()
        delivered = True
        for adapter in self._adapters:
            try:
                loop.run_until_complete(
                    asyncio.wait_for(
                        self._export_with_retry(adapter, batch),
                        timeout=self._delivery_timeout(),
                    )
                )
                logger.debug(f"Exported batch {batch.sequence} ({len(batch)} spans) via {adapter.name}")
            except Exception as e:
                delivered = False
                logger.warning(
                    f"Discarding batch {batch.sequence} ({len(batch)} spans) after failed export "
                    f"via {adapter.name}: {str(e) or type(e).__name__}"
                )

        if delivered:
            self._diagnostics.record_batch_exported(len(batch), (time.monotonic() - started) * 1000)
        else:
            self._diagnostics.record_batch_failed(len(batch))

    def _delivery_timeout(self) -> float:
        timeout = self._config.export_timeout_seconds
        remaining = self._remaining_stop_time()
        if remaining is not None:
            timeout = min(timeout, remaining)
        return timeout

    async def _export_with_retry(self, adapter: "SpanExportAdapter", batch: ExportBatch) -> None:
        async def attempt() -> None:
            result: ExportResult | None = adapter.export_batch(batch)  # type: ignore[assignment]
            # Sync adapters are supported as well
            if inspect.isawaitable(result):
                result = await result
            if result is not None and not result.is_success:
                raise ExportError(str(result.error), retryable=result.retryable)

        await retry_async(
            attempt,
            config=self._config.retry,
            operation_name=f"export via {adapter.name}",
            is_retryable=lambda e: getattr(e, "retryable", True),
            on_retry=lambda _attempt, _error: self._diagnostics.record_retry(),
        )

    def _shutdown_adapters(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            for adapter in self._adapters:
                try:
                    result = adapter.shutdown()
                    if inspect.isawaitable(result):
                        loop.run_until_complete(result)
                except Exception as e:
                    logger.error(f"Error shutting down adapter {adapter.name}: {e}")
        finally:
            loop.close()
