"""Tracewire: structured, span-aware diagnostics with batched OTLP export."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .core import (
    AlreadyInitializedError,
    ConfigurationError,
    ConsoleLayer,
    ErrorContextLayer,
    ErrorContextSnapshot,
    ExportLayer,
    ExportResult,
    ExportResultCode,
    FilterLayer,
    InMemorySpanAdapter,
    Layer,
    Level,
    LogRecord,
    OtlpHttpSpanAdapter,
    OtlpHttpSpanAdapterConfig,
    Pipeline,
    PipelineConfig,
    SeverityFilterLayer,
    Span,
    SpanExportAdapter,
    SpanScope,
    StatusCode,
    TraceContext,
    TracewireError,
    capture_error_context,
    current,
    current_span,
    extract,
    inject,
    run_in_context,
    use_context,
)
from .core.logger import LogLevel, get_log_level, set_log_level
from .core.pipeline import traced_function
from .version import SDK_VERSION

__version__ = SDK_VERSION


def init(
    config: PipelineConfig | None = None,
    *,
    adapters: list[SpanExportAdapter] | None = None,
    extra_layers: tuple[Layer, ...] | list[Layer] = (),
    **overrides: Any,
) -> Pipeline:
    """Initialize the process-wide pipeline. See ``Pipeline.initialize``."""
    return Pipeline.initialize(config, adapters=adapters, extra_layers=extra_layers, **overrides)


def get_pipeline() -> Pipeline | None:
    return Pipeline.get_instance()


def shutdown(timeout: float | None = None) -> None:
    """Shut down the active pipeline, if any."""
    pipeline = Pipeline.get_instance()
    if pipeline is not None:
        pipeline.shutdown(timeout)


def span(
    name: str,
    *,
    level: Level | str = Level.INFO,
    target: str | None = None,
    attributes: Mapping[str, Any] | None = None,
    parent: TraceContext | None = None,
) -> SpanScope:
    """
    Open a span for a ``with`` / ``async with`` block.

    Without an active pipeline the span is not recorded, but it still scopes
    the ambient context so ``inject()`` keeps producing headers.
    """
    return SpanScope(
        Pipeline.get_instance(),
        name,
        level=level,
        target=target,
        attributes=attributes,
        parent=parent,
    )


def traced(
    name: str | None = None,
    *,
    level: Level | str = Level.INFO,
    target: str | None = None,
    attributes: Mapping[str, Any] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator running each call in a span of the active pipeline."""
    return traced_function(
        Pipeline.get_instance, name, level=level, target=target, attributes=attributes
    )


def log(level: Level | str, message: str, **fields: Any) -> LogRecord | None:
    pipeline = Pipeline.get_instance()
    if pipeline is None:
        return None
    return pipeline.log(level, message, **fields)


def trace(message: str, **fields: Any) -> LogRecord | None:
    return log(Level.TRACE, message, **fields)


def debug(message: str, **fields: Any) -> LogRecord | None:
    return log(Level.DEBUG, message, **fields)


def info(message: str, **fields: Any) -> LogRecord | None:
    return log(Level.INFO, message, **fields)


def warn(message: str, **fields: Any) -> LogRecord | None:
    return log(Level.WARN, message, **fields)


def error(message: str, **fields: Any) -> LogRecord | None:
    return log(Level.ERROR, message, **fields)


__all__ = [
    # Lifecycle
    "init",
    "shutdown",
    "get_pipeline",
    "Pipeline",
    "PipelineConfig",
    # Emission
    "span",
    "traced",
    "log",
    "trace",
    "debug",
    "info",
    "warn",
    "error",
    "SpanScope",
    # Context
    "current",
    "current_span",
    "use_context",
    "run_in_context",
    "capture_error_context",
    "inject",
    "extract",
    # Types
    "Level",
    "StatusCode",
    "TraceContext",
    "Span",
    "LogRecord",
    "ErrorContextSnapshot",
    # Layers
    "Layer",
    "FilterLayer",
    "SeverityFilterLayer",
    "ConsoleLayer",
    "ErrorContextLayer",
    "ExportLayer",
    # Adapters
    "SpanExportAdapter",
    "ExportResult",
    "ExportResultCode",
    "InMemorySpanAdapter",
    "OtlpHttpSpanAdapter",
    "OtlpHttpSpanAdapterConfig",
    # Logger
    "LogLevel",
    "set_log_level",
    "get_log_level",
    # Errors
    "TracewireError",
    "ConfigurationError",
    "AlreadyInitializedError",
    "__version__",
]
