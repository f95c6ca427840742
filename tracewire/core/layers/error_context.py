"""Attaches the active span chain to error-level log records."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, override

from ..context import capture_error_context
from ..types import Level
from .base import Layer

if TYPE_CHECKING:
    from ..types import LogRecord


class ErrorContextLayer(Layer):
    """
    Captures an ErrorContextSnapshot for records at or above ``min_level``.

    Records that already carry a snapshot (captured explicitly by the caller)
    are left as they are.
    """

    name = "error_context"

    def __init__(self, min_level: Level = Level.ERROR) -> None:
        self._min_level = min_level

    def __repr__(self) -> str:
        return f"ErrorContextLayer(min_level={self._min_level.name})"

    @override
    def on_log_record(self, record: LogRecord) -> LogRecord | None:
        if record.level < self._min_level or record.error_context is not None:
            return None
        return dataclasses.replace(record, error_context=capture_error_context())
