"""Base interface for span export adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..types import ExportBatch


class ExportResultCode(Enum):
    """Outcome of one delivery attempt."""

    SUCCESS = 0
    FAILED = 1


@dataclass
class ExportResult:
    """Result of exporting one batch."""

    code: ExportResultCode
    error: Exception | None = None
    # False when trying again cannot help (e.g. the collector rejected the payload)
    retryable: bool = True

    @classmethod
    def success(cls) -> ExportResult:
        return cls(code=ExportResultCode.SUCCESS)

    @classmethod
    def failed(cls, error: Exception | str, retryable: bool = True) -> ExportResult:
        if isinstance(error, str):
            error = Exception(error)
        return cls(code=ExportResultCode.FAILED, error=error, retryable=retryable)

    @property
    def is_success(self) -> bool:
        return self.code == ExportResultCode.SUCCESS


class SpanExportAdapter(ABC):
    """Delivers export batches to a destination."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short adapter name used in logs."""

    @abstractmethod
    async def export_batch(self, batch: ExportBatch) -> ExportResult:
        """Deliver one batch. Must not raise for delivery failures; return a failed result."""

    async def shutdown(self) -> None:
        """Release adapter resources."""
        return None
