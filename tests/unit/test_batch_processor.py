"""Tests for the BatchExporter."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from tracewire.core.adapters import ExportResult, InMemorySpanAdapter
from tracewire.core.batch_processor import BatchExporter, BatchExporterConfig
from tracewire.core.errors import ConfigurationError
from tracewire.core.metrics import ExporterDiagnostics
from tracewire.core.resilience import RetryConfig
from tests.utils.test_helpers import create_test_span, wait_until

FAST_RETRY = RetryConfig(max_attempts=3, initial_delay_seconds=0.01, jitter=False)


class ScriptedAdapter:
    """Adapter returning queued results; succeeds once the script runs out."""

    name = "scripted"

    def __init__(self, results: list[ExportResult] | None = None, delay: float = 0.0) -> None:
        self.results = list(results or [])
        self.delay = delay
        self.calls = 0
        self.batches = []
        self.shutdown_called = False

    async def export_batch(self, batch):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            return self.results.pop(0)
        self.batches.append(batch)
        return ExportResult.success()

    async def shutdown(self):
        self.shutdown_called = True


def _exporter(adapters, diagnostics=None, **config) -> BatchExporter:
    config.setdefault("retry", FAST_RETRY)
    return BatchExporter(adapters, BatchExporterConfig(**config), diagnostics)


class TestBatchExporterConfig:
    """Tests for BatchExporterConfig validation."""

    def test_defaults(self):
        config = BatchExporterConfig()
        assert config.max_batch_size == 512
        assert config.max_batch_delay_seconds == 5.0
        assert config.max_queued_batches == 64
        assert config.export_timeout_seconds == 30.0
        assert config.retry.max_attempts == 3

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_batch_size": 0},
            {"max_batch_delay_seconds": 0},
            {"max_queued_batches": 0},
            {"export_timeout_seconds": -1},
            {"retry": RetryConfig(max_attempts=0)},
        ],
    )
    def test_invalid_values_are_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            BatchExporter([], BatchExporterConfig(**overrides))


class TestBatchTriggers:
    """A batch is sealed by size or by delay, whichever comes first."""

    def test_size_trigger(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=3, max_batch_delay_seconds=10.0)
        exporter.start()
        try:
            spans = [create_test_span(name=f"span-{i}") for i in range(3)]
            for span in spans:
                exporter.enqueue(span)

            assert wait_until(lambda: in_memory_adapter.batch_count == 1)
            assert list(in_memory_adapter.get_batches()[0].spans) == spans
        finally:
            exporter.stop(timeout=5)

    def test_delay_trigger(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=100, max_batch_delay_seconds=0.1)
        exporter.start()
        try:
            exporter.enqueue(create_test_span(name="a"))
            exporter.enqueue(create_test_span(name="b"))

            assert wait_until(lambda: in_memory_adapter.batch_count == 1)
            assert [s.name for s in in_memory_adapter.get_all_spans()] == ["a", "b"]
        finally:
            exporter.stop(timeout=5)

    def test_batch_never_exceeds_max_size(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=4, max_batch_delay_seconds=10.0)
        exporter.start()
        for i in range(10):
            exporter.enqueue(create_test_span(name=f"span-{i}"))
        exporter.stop(timeout=5)

        assert all(len(batch) <= 4 for batch in in_memory_adapter.get_batches())
        assert [s.name for s in in_memory_adapter.get_all_spans()] == [f"span-{i}" for i in range(10)]


class TestNonBlockingEnqueue:
    """Emitting never waits on delivery."""

    def test_enqueue_returns_quickly_while_adapter_is_slow(self):
        adapter = ScriptedAdapter(delay=0.3)
        exporter = _exporter(
            [adapter], max_batch_size=10, max_batch_delay_seconds=10.0, max_queued_batches=2
        )
        exporter.start()
        try:
            started = time.monotonic()
            for _ in range(1000):
                exporter.enqueue(create_test_span())
            elapsed = time.monotonic() - started

            assert elapsed < 0.5, f"enqueue took {elapsed:.3f}s while the adapter was busy"
        finally:
            exporter.stop(timeout=5)

    def test_concurrent_enqueue_from_many_threads(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=7, max_batch_delay_seconds=0.05)
        exporter.start()

        def emit():
            for _ in range(100):
                exporter.enqueue(create_test_span())

        threads = [threading.Thread(target=emit) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        exporter.stop(timeout=5)

        spans = in_memory_adapter.get_all_spans()
        assert len(spans) == 800
        assert len({id(span) for span in spans}) == 800


class TestOverflow:
    """The pending queue is bounded and drops the oldest batch."""

    def test_drops_oldest_batches(self, in_memory_adapter: InMemorySpanAdapter, diagnostics):
        exporter = _exporter(
            [in_memory_adapter],
            diagnostics,
            max_batch_size=1,
            max_batch_delay_seconds=10.0,
            max_queued_batches=2,
        )
        # Not started: batches pile up in the queue
        for i in range(5):
            exporter.enqueue(create_test_span(name=f"span-{i}"))

        assert exporter.pending_batch_count == 2
        export = diagnostics.get_snapshot().export
        assert export.batches_dropped == 3
        assert export.spans_dropped == 3

        exporter.stop(timeout=5)
        assert [s.name for s in in_memory_adapter.get_all_spans()] == ["span-3", "span-4"]


class TestFlushAndStop:
    """Tests for force_flush and stop."""

    def test_force_flush_delivers_open_batch(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=100, max_batch_delay_seconds=10.0)
        exporter.start()
        try:
            for i in range(5):
                exporter.enqueue(create_test_span(name=f"span-{i}"))

            assert exporter.force_flush(timeout=5) is True
            assert len(in_memory_adapter.get_all_spans()) == 5
        finally:
            exporter.stop(timeout=5)

    def test_force_flush_without_worker_drains_on_caller(self, in_memory_adapter: InMemorySpanAdapter):
        exporter = _exporter([in_memory_adapter], max_batch_size=100, max_batch_delay_seconds=10.0)
        exporter.enqueue(create_test_span())

        assert exporter.force_flush() is True
        assert in_memory_adapter.batch_count == 1

    def test_stop_delivers_everything_exactly_once(self, in_memory_adapter: InMemorySpanAdapter, diagnostics):
        exporter = _exporter(
            [in_memory_adapter], diagnostics, max_batch_size=3, max_batch_delay_seconds=10.0
        )
        exporter.start()
        spans = [create_test_span() for _ in range(10)]
        for span in spans:
            exporter.enqueue(span)
        exporter.stop(timeout=5)
        exporter.stop(timeout=5)

        delivered = in_memory_adapter.get_all_spans()
        assert len(delivered) == 10
        assert {id(s) for s in delivered} == {id(s) for s in spans}
        assert diagnostics.get_snapshot().export.spans_exported == 10
        assert not exporter.is_running

    def test_enqueue_after_stop_is_discarded(self, in_memory_adapter: InMemorySpanAdapter, diagnostics):
        exporter = _exporter([in_memory_adapter], diagnostics)
        exporter.start()
        exporter.stop(timeout=5)

        assert exporter.enqueue(create_test_span()) is False
        assert diagnostics.get_snapshot().export.spans_discarded_after_shutdown == 1
        assert in_memory_adapter.batch_count == 0

    def test_stop_shuts_down_adapters(self):
        adapter = ScriptedAdapter()
        exporter = _exporter([adapter])
        exporter.start()
        exporter.stop(timeout=5)
        assert adapter.shutdown_called

    def test_worker_loop_released_after_stop(self):
        exporter = _exporter([ScriptedAdapter()], max_batch_delay_seconds=0.05)
        exporter.start()
        assert wait_until(lambda: exporter._thread_loop is not None)
        exporter.stop(timeout=5)
        assert exporter._thread_loop is None

    def test_stop_timeout_bounds_the_whole_stop(self, diagnostics):
        adapter = ScriptedAdapter(delay=60.0)
        exporter = _exporter(
            [adapter], diagnostics, max_batch_size=1, export_timeout_seconds=1.0
        )
        exporter.start()
        for _ in range(6):
            exporter.enqueue(create_test_span())
        assert wait_until(lambda: adapter.calls >= 1)

        started = time.monotonic()
        exporter.stop(timeout=0.5)

        assert time.monotonic() - started < 1.5
        export = diagnostics.get_snapshot().export
        assert export.batches_abandoned >= 5
        assert export.spans_abandoned == export.batches_abandoned
        # The in-flight delivery still ends within its own timeout and closes the adapters
        assert wait_until(lambda: adapter.shutdown_called, timeout_seconds=5)
        export = diagnostics.get_snapshot().export
        assert export.batches_failed + export.batches_abandoned == 6
        assert export.batches_exported == 0

    def test_stop_without_worker_abandons_after_deadline(self, diagnostics):
        adapter = ScriptedAdapter(delay=60.0)
        exporter = _exporter(
            [adapter], diagnostics, max_batch_size=1, export_timeout_seconds=0.2
        )
        for _ in range(5):
            exporter.enqueue(create_test_span())

        started = time.monotonic()
        exporter.stop(timeout=0.3)

        assert time.monotonic() - started < 1.0
        export = diagnostics.get_snapshot().export
        assert export.batches_abandoned >= 1
        assert export.batches_failed + export.batches_abandoned == 5
        assert adapter.shutdown_called


class TestDeliveryFailures:
    """Retry, give-up and isolation of failed deliveries."""

    def test_retryable_failure_is_retried(self, diagnostics):
        adapter = ScriptedAdapter([ExportResult.failed("busy"), ExportResult.failed("busy")])
        exporter = _exporter([adapter], diagnostics, max_batch_size=1)
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        export = diagnostics.get_snapshot().export
        assert adapter.calls == 3
        assert export.batches_exported == 1
        assert export.retry_attempts == 2
        assert export.batches_failed == 0

    def test_non_retryable_failure_is_not_retried(self, diagnostics):
        adapter = ScriptedAdapter([ExportResult.failed("bad request", retryable=False)])
        exporter = _exporter([adapter], diagnostics, max_batch_size=1)
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        assert adapter.calls == 1
        assert diagnostics.get_snapshot().export.batches_failed == 1

    def test_batch_is_discarded_after_max_attempts(self, diagnostics):
        adapter = ScriptedAdapter([ExportResult.failed("down")] * 10)
        exporter = _exporter([adapter], diagnostics, max_batch_size=1)
        exporter.enqueue(create_test_span())
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        export = diagnostics.get_snapshot().export
        assert adapter.calls == 6
        assert export.batches_failed == 2
        assert export.spans_failed == 2

    def test_hanging_adapter_times_out(self, diagnostics):
        adapter = ScriptedAdapter(delay=10.0)
        exporter = _exporter([adapter], diagnostics, max_batch_size=1, export_timeout_seconds=0.1)
        exporter.enqueue(create_test_span())

        started = time.monotonic()
        exporter.stop(timeout=5)

        assert time.monotonic() - started < 3
        assert diagnostics.get_snapshot().export.batches_failed == 1

    def test_timeout_warning_names_the_error(self, mocker):
        mock_logger = mocker.patch("tracewire.core.batch_processor.logger")
        adapter = ScriptedAdapter(delay=10.0)
        exporter = _exporter([adapter], max_batch_size=1, export_timeout_seconds=0.1)
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        messages = [call.args[0] for call in mock_logger.warning.call_args_list]
        failure = next(m for m in messages if m.startswith("Discarding batch"))
        assert failure.endswith("via scripted: TimeoutError")

    def test_one_failing_adapter_does_not_block_another(self, in_memory_adapter, diagnostics):
        failing = ScriptedAdapter([ExportResult.failed("nope", retryable=False)])
        exporter = _exporter([failing, in_memory_adapter], diagnostics, max_batch_size=1)
        exporter.enqueue(create_test_span(name="both"))
        exporter.stop(timeout=5)

        assert [s.name for s in in_memory_adapter.get_all_spans()] == ["both"]
        assert diagnostics.get_snapshot().export.batches_failed == 1

    def test_sync_adapter_is_supported(self):
        received = []

        class SyncAdapter:
            name = "sync"

            def export_batch(self, batch):
                received.append(batch)
                return ExportResult.success()

            def shutdown(self):
                pass

        exporter = _exporter([SyncAdapter()], max_batch_size=2)
        exporter.enqueue(create_test_span())
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        assert len(received) == 1

    def test_raising_adapter_is_contained(self, diagnostics):
        class BrokenAdapter:
            name = "broken"

            async def export_batch(self, batch):
                raise ValueError("encoder bug")

            async def shutdown(self):
                pass

        exporter = _exporter([BrokenAdapter()], diagnostics, max_batch_size=1)
        exporter.enqueue(create_test_span())
        exporter.stop(timeout=5)

        assert diagnostics.get_snapshot().export.batches_failed == 1


def test_diagnostics_default_to_private_instance():
    exporter = BatchExporter([])
    assert isinstance(exporter.diagnostics, ExporterDiagnostics)
    assert "BatchExporter" in repr(exporter)
