"""Layers observing the diagnostic event stream."""

from .base import FilterLayer, Layer, LayerChain
from .console import ConsoleLayer
from .error_context import ErrorContextLayer
from .export import ExportLayer
from .filter import FilterDirective, SeverityFilterLayer, parse_filter_directives

__all__ = [
    "Layer",
    "FilterLayer",
    "LayerChain",
    "SeverityFilterLayer",
    "FilterDirective",
    "parse_filter_directives",
    "ConsoleLayer",
    "ErrorContextLayer",
    "ExportLayer",
]
