"""Core tracewire pipeline: events, context, layers and export."""

from .adapters import (
    ExportResult,
    ExportResultCode,
    InMemorySpanAdapter,
    OtlpHttpSpanAdapter,
    OtlpHttpSpanAdapterConfig,
    SpanExportAdapter,
)
from .batch_processor import BatchExporter, BatchExporterConfig
from .config import (
    PipelineConfig,
    TracewireFileConfig,
    find_project_root,
    load_tracewire_config,
    resolve_config,
)
from .context import capture_error_context, current, current_span, run_in_context, use_context
from .errors import AlreadyInitializedError, ConfigurationError, ExportError, TracewireError
from .layers import (
    ConsoleLayer,
    ErrorContextLayer,
    ExportLayer,
    FilterLayer,
    Layer,
    LayerChain,
    SeverityFilterLayer,
)
from .metrics import DiagnosticsSnapshot, ExporterDiagnostics, ExportMetrics
from .pipeline import Pipeline, SpanScope
from .propagation import W3CTraceContextPropagator, extract, inject
from .resilience import RetryConfig
from .types import (
    ErrorContextSnapshot,
    ExportBatch,
    Level,
    LogRecord,
    Span,
    SpanEvent,
    SpanStatus,
    StatusCode,
    TraceContext,
)

__all__ = [
    # Pipeline
    "Pipeline",
    "SpanScope",
    # Types
    "Level",
    "StatusCode",
    "SpanStatus",
    "TraceContext",
    "Span",
    "SpanEvent",
    "LogRecord",
    "ErrorContextSnapshot",
    "ExportBatch",
    # Context
    "current",
    "current_span",
    "use_context",
    "run_in_context",
    "capture_error_context",
    "inject",
    "extract",
    "W3CTraceContextPropagator",
    # Layers
    "Layer",
    "FilterLayer",
    "LayerChain",
    "SeverityFilterLayer",
    "ConsoleLayer",
    "ErrorContextLayer",
    "ExportLayer",
    # Export
    "BatchExporter",
    "BatchExporterConfig",
    "RetryConfig",
    "SpanExportAdapter",
    "ExportResult",
    "ExportResultCode",
    "InMemorySpanAdapter",
    "OtlpHttpSpanAdapter",
    "OtlpHttpSpanAdapterConfig",
    # Config
    "PipelineConfig",
    "TracewireFileConfig",
    "find_project_root",
    "load_tracewire_config",
    "resolve_config",
    # Diagnostics
    "ExporterDiagnostics",
    "DiagnosticsSnapshot",
    "ExportMetrics",
    # Errors
    "TracewireError",
    "ConfigurationError",
    "AlreadyInitializedError",
    "ExportError",
]
