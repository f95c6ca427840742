"""Error types raised by the diagnostic pipeline.

Only configuration errors and repeated initialization ever reach the host
application. Export errors are raised and handled inside the exporter worker.
"""

from __future__ import annotations


class TracewireError(Exception):
    """Base class for all tracewire errors."""


class ConfigurationError(TracewireError):
    """Raised when the pipeline configuration is invalid."""

    def __init__(self, option: str, message: str) -> None:
        self.option = option
        super().__init__(f"Invalid configuration for '{option}': {message}")


class AlreadyInitializedError(TracewireError):
    """Raised when the pipeline is initialized a second time."""

    def __init__(self) -> None:
        super().__init__("The tracewire pipeline has already been initialized")


class ExportError(TracewireError):
    """Delivery of an export batch failed."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
