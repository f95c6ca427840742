"""Span export adapters."""

from .base import ExportResult, ExportResultCode, SpanExportAdapter
from .memory import InMemorySpanAdapter
from .otlp import OtlpHttpSpanAdapter, OtlpHttpSpanAdapterConfig, validate_endpoint

__all__ = [
    # Base
    "SpanExportAdapter",
    "ExportResult",
    "ExportResultCode",
    # Adapters
    "InMemorySpanAdapter",
    "OtlpHttpSpanAdapter",
    "OtlpHttpSpanAdapterConfig",
    # Helpers
    "validate_endpoint",
]
