"""Pipeline singleton: lifecycle and the emission API."""

from __future__ import annotations

import atexit
import functools
import inspect
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from types import TracebackType
from typing import Any, TypeVar

from .adapters.base import SpanExportAdapter
from .adapters.otlp import OtlpHttpSpanAdapter, OtlpHttpSpanAdapterConfig
from .batch_processor import BatchExporter, BatchExporterConfig
from .config import PipelineConfig, load_tracewire_config, resolve_config
from .context import current, enter_span
from .errors import AlreadyInitializedError
from .layers import (
    ConsoleLayer,
    ErrorContextLayer,
    ExportLayer,
    Layer,
    LayerChain,
    SeverityFilterLayer,
)
from .log_bridge import PipelineLogHandler, install_log_bridge, remove_log_bridge
from .logger import configure_logger
from .metrics import ExporterDiagnostics
from .propagation import W3CTraceContextPropagator, set_global_propagator
from .resilience import RetryConfig
from .types import DEFAULT_TARGET, ErrorContextSnapshot, Level, LogRecord, Span, TraceContext

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_PACKAGE_PREFIX = "tracewire."


def _caller_target() -> str:
    """Module name of the first stack frame outside the tracewire package."""
    frame = sys._getframe(1)
    while frame is not None:
        name = frame.f_globals.get("__name__", "")
        if name != "tracewire" and not name.startswith(_PACKAGE_PREFIX):
            return name or DEFAULT_TARGET
        frame = frame.f_back
    return DEFAULT_TARGET


def open_span(
    pipeline: Pipeline | None,
    name: str,
    *,
    level: Level | str = Level.INFO,
    target: str | None = None,
    attributes: Mapping[str, Any] | None = None,
    parent: TraceContext | None = None,
) -> Span:
    """
    Create a span under ``parent`` (default: the ambient context).

    Without a pipeline the span is still created, so nested code and
    ``inject()`` see a consistent context, but no layer observes it.
    """
    parent = parent if parent is not None else current()
    context = parent.child() if parent is not None else TraceContext.new_root()
    span = Span(
        name,
        context,
        level=Level.parse(level),
        target=target or _caller_target(),
        attributes=attributes,
    )
    if pipeline is not None:
        pipeline._dispatch_span_start(span)
    return span


class SpanScope:
    """
    Context manager returned by ``span()``.

    Usable with ``with`` and ``async with``. On entry the span becomes the
    innermost open span of the calling task, unless the filter rejected it.
    On exit an escaping exception is recorded on the span, the span is closed
    and the previous context is restored. The exception itself propagates
    unchanged.
    """

    def __init__(
        self,
        pipeline: Pipeline | None,
        name: str,
        *,
        level: Level | str = Level.INFO,
        target: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        parent: TraceContext | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._name = name
        self._level = level
        self._target = target or _caller_target()
        self._attributes = attributes
        self._parent = parent
        self._span: Span | None = None
        self._scope = None

    def __repr__(self) -> str:
        return f"SpanScope(name={self._name!r}, span={self._span!r})"

    @property
    def span(self) -> Span | None:
        return self._span

    def __enter__(self) -> Span:
        self._span = open_span(
            self._pipeline,
            self._name,
            level=self._level,
            target=self._target,
            attributes=self._attributes,
            parent=self._parent,
        )
        if self._span.vetoed:
            # Vetoed spans stay out of the ambient context, so children attach
            # to the nearest recorded ancestor
            return self._span
        self._scope = enter_span(self._span)
        self._scope.__enter__()
        return self._span

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        span = self._span
        try:
            if span is not None and exc is not None:
                if isinstance(exc, Exception):
                    span.record_exception(exc)
                else:
                    # Cancellation and interpreter exit leave the status untouched
                    span.set_attribute("tracewire.interrupted", type(exc).__qualname__)
            if span is not None and span.end():
                if self._pipeline is not None:
                    self._pipeline._dispatch_span_end(span)
        finally:
            if self._scope is not None:
                self._scope.__exit__(None, None, None)
                self._scope = None

    async def __aenter__(self) -> Span:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc, tb)


def traced_function(
    pipeline_getter: Callable[[], Pipeline | None],
    name: str | None = None,
    *,
    level: Level | str = Level.INFO,
    target: str | None = None,
    attributes: Mapping[str, Any] | None = None,
) -> Callable[[F], F]:
    """
    Build a decorator that runs each call of the function inside a span.

    The pipeline is looked up per call, so a module-level decorator keeps
    working across initialize and shutdown.
    """

    def decorator(func: F) -> F:
        span_name = name or func.__qualname__
        span_target = target or func.__module__ or DEFAULT_TARGET

        def scope() -> SpanScope:
            return SpanScope(
                pipeline_getter(),
                span_name,
                level=level,
                target=span_target,
                attributes=attributes,
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                async with scope():
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with scope():
                return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


class Pipeline:
    """
    The process-wide diagnostics pipeline.

    Owns the layer chain and the batch exporter. Exactly one pipeline can be
    initialized per process; ``shutdown()`` flushes what is buffered and turns
    every later emission into a no-op.
    """

    _instance: Pipeline | None = None
    _initialized = False
    _lock = threading.Lock()

    def __init__(
        self,
        config: PipelineConfig,
        chain: LayerChain,
        exporter: BatchExporter,
        diagnostics: ExporterDiagnostics,
    ) -> None:
        self.config = config
        self._chain = chain
        self._exporter = exporter
        self._diagnostics = diagnostics
        self._log_handler: PipelineLogHandler | None = None
        self._shutdown_lock = threading.Lock()
        self._active = True

    def __repr__(self) -> str:
        return (
            f"Pipeline(service={self.config.service_name!r}, "
            f"layers={[layer.name for layer in self._chain.layers]}, active={self._active})"
        )

    @classmethod
    def initialize(
        cls,
        config: PipelineConfig | None = None,
        *,
        adapters: list[SpanExportAdapter] | None = None,
        extra_layers: tuple[Layer, ...] | list[Layer] = (),
        **overrides: Any,
    ) -> Pipeline:
        """
        Build, start and register the pipeline.

        Configuration precedence (highest to lowest):
        1. ``config`` / keyword overrides
        2. Environment variables
        3. YAML configuration (.tracewire/config.yaml)
        4. Built-in defaults

        Args:
            config: Complete configuration. When omitted it is resolved from
                the environment, the config file and ``overrides``.
            adapters: Export adapters to use instead of the OTLP/HTTP adapter
            extra_layers: Layers appended after the built-in ones
            **overrides: PipelineConfig fields

        Returns:
            The initialized pipeline

        Raises:
            AlreadyInitializedError: If a pipeline was already initialized
            ConfigurationError: If any option is invalid
        """
        with cls._lock:
            if cls._initialized:
                raise AlreadyInitializedError()

            if config is None:
                config = resolve_config(overrides, load_tracewire_config())
            elif overrides:
                config = replace(config, **overrides)

            config.validate()
            configure_logger(log_level=config.log_level, prefix="Tracewire")

            if adapters is None:
                adapters = []
                if config.export_enabled:
                    adapters.append(
                        OtlpHttpSpanAdapter(
                            OtlpHttpSpanAdapterConfig(
                                endpoint=config.endpoint,
                                service_name=config.service_name,
                                headers=dict(config.export_headers),
                            )
                        )
                    )

            diagnostics = ExporterDiagnostics()
            exporter = BatchExporter(
                adapters,
                BatchExporterConfig(
                    max_batch_size=config.max_batch_size,
                    max_batch_delay_seconds=config.max_batch_delay_seconds,
                    max_queued_batches=config.max_queued_batches,
                    export_timeout_seconds=config.export_timeout_seconds,
                    retry=RetryConfig(max_attempts=config.max_export_attempts),
                ),
                diagnostics,
            )

            layers: list[Layer] = [SeverityFilterLayer(config.severity_filter), ErrorContextLayer()]
            if config.console_enabled:
                layers.append(
                    ConsoleLayer(
                        config.output_stream,
                        ansi=config.ansi,
                        span_events=config.console_span_events,
                    )
                )
            layers.append(ExportLayer(exporter))
            layers.extend(extra_layers)

            instance = cls(config, LayerChain(layers, diagnostics), exporter, diagnostics)
            set_global_propagator(W3CTraceContextPropagator())
            exporter.start()

            if config.bridge_stdlib_logging:
                instance._log_handler = install_log_bridge(instance)

            # Flush on interpreter exit
            atexit.register(instance.shutdown)

            cls._instance = instance
            cls._initialized = True
            logger.info(
                f"Pipeline initialized for service '{config.service_name}' "
                f"with adapters {[adapter.name for adapter in adapters]}"
            )
            return instance

    @classmethod
    def get_instance(cls) -> Pipeline | None:
        """Return the active pipeline, or None before initialize / after shutdown."""
        return cls._instance

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def chain(self) -> LayerChain:
        return self._chain

    @property
    def exporter(self) -> BatchExporter:
        return self._exporter

    @property
    def diagnostics(self) -> ExporterDiagnostics:
        return self._diagnostics

    def _dispatch_span_start(self, span: Span) -> None:
        if self._active:
            span.recording = self._chain.dispatch_span_start(span)
            span.vetoed = not span.recording

    def _dispatch_span_end(self, span: Span) -> None:
        # The filter decision made at start also holds at end
        if self._active and span.recording:
            self._chain.dispatch_span_end(span)

    def span(
        self,
        name: str,
        *,
        level: Level | str = Level.INFO,
        target: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        parent: TraceContext | None = None,
    ) -> SpanScope:
        """Open a span for the duration of a ``with`` / ``async with`` block."""
        return SpanScope(
            self,
            name,
            level=level,
            target=target or _caller_target(),
            attributes=attributes,
            parent=parent,
        )

    def start_span(
        self,
        name: str,
        *,
        level: Level | str = Level.INFO,
        target: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        parent: TraceContext | None = None,
    ) -> Span:
        """
        Open a span without making it ambient.

        The caller must pass it to ``end_span()``. Use ``use_context(span.context)``
        to run code as its child.
        """
        return open_span(
            self,
            name,
            level=level,
            target=target or _caller_target(),
            attributes=attributes,
            parent=parent,
        )

    def end_span(self, span: Span) -> None:
        """Close a span opened with ``start_span()``. Closing twice is a no-op."""
        if span.end():
            self._dispatch_span_end(span)

    def traced(
        self,
        name: str | None = None,
        *,
        level: Level | str = Level.INFO,
        target: str | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> Callable[[F], F]:
        """Decorator running each call of a sync or async function in a span."""
        return traced_function(
            lambda: self, name, level=level, target=target, attributes=attributes
        )

    def log(
        self,
        level: Level | str,
        message: str,
        *,
        target: str | None = None,
        fields: Mapping[str, Any] | None = None,
        error_context: ErrorContextSnapshot | None = None,
        **extra_fields: Any,
    ) -> LogRecord | None:
        """
        Emit a log record in the ambient trace context.

        Returns:
            The record as it left the layer chain, or None if it was filtered
            out or the pipeline is shut down
        """
        if not self._active:
            return None
        record_fields = dict(fields or {})
        record_fields.update(extra_fields)
        record = LogRecord(
            level=Level.parse(level),
            message=message,
            target=target or _caller_target(),
            fields=record_fields,
            context=current(),
            error_context=error_context,
        )
        return self._chain.dispatch_log_record(record)

    def trace(self, message: str, **fields: Any) -> LogRecord | None:
        return self.log(Level.TRACE, message, **fields)

    def debug(self, message: str, **fields: Any) -> LogRecord | None:
        return self.log(Level.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> LogRecord | None:
        return self.log(Level.INFO, message, **fields)

    def warn(self, message: str, **fields: Any) -> LogRecord | None:
        return self.log(Level.WARN, message, **fields)

    def error(self, message: str, **fields: Any) -> LogRecord | None:
        return self.log(Level.ERROR, message, **fields)

    def force_flush(self, timeout: float | None = None) -> bool:
        """Block until every span closed so far has been handed to the adapters."""
        if not self._active:
            return True
        return self._exporter.force_flush(timeout)

    def shutdown(self, timeout: float | None = None) -> None:
        """
        Flush and stop the pipeline. Safe to call more than once.

        Args:
            timeout: Upper bound for delivering what is still buffered (default:
                the export timeout). Batches left after it are abandoned and
                counted in diagnostics.
        """
        with self._shutdown_lock:
            if not self._active:
                return
            self._active = False

        if self._log_handler is not None:
            remove_log_bridge(self._log_handler)
            self._log_handler = None

        # Stop the exporter first (flushes remaining spans)
        self._exporter.stop(timeout)
        self._chain.shutdown()
        atexit.unregister(self.shutdown)

        with Pipeline._lock:
            if Pipeline._instance is self:
                Pipeline._instance = None

        snapshot = self._diagnostics.get_snapshot().export
        logger.debug(
            f"Pipeline shut down: exported={snapshot.spans_exported} "
            f"dropped={snapshot.spans_dropped} failed={snapshot.spans_failed}"
        )
