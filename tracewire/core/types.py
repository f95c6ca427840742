"""Core types and data structures for the diagnostic pipeline."""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Union

from .errors import ConfigurationError
from .ids import (
    format_span_id,
    format_trace_id,
    generate_span_id,
    generate_trace_id,
    is_valid_span_id,
    is_valid_trace_id,
)

logger = logging.getLogger(__name__)

AttributeValue = Union[str, bool, int, float]

DEFAULT_TARGET = "tracewire"


class Level(IntEnum):
    """Severity of a span or log record. Higher is more severe."""

    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4

    @classmethod
    def parse(cls, value: str | Level) -> Level:
        """Parse a level name case-insensitively ("warning" is accepted for WARN)."""
        if isinstance(value, Level):
            return value
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ConfigurationError("severity_filter", f"unknown level '{value}'") from None


class StatusCode(Enum):
    """Span completion status code."""

    UNSET = 0
    OK = 1
    ERROR = 2


@dataclass(frozen=True)
class SpanStatus:
    """Span completion status."""

    code: StatusCode = StatusCode.UNSET
    message: str = ""


@dataclass(frozen=True)
class TraceContext:
    """
    Causal identity of a span.

    A child context always keeps its parent's trace id and sampling decision.
    Ids are plain integers: 128 bits for the trace, 64 bits for spans.
    """

    trace_id: int
    span_id: int
    parent_span_id: int | None = None
    sampled: bool = True

    def __post_init__(self) -> None:
        if not is_valid_trace_id(self.trace_id):
            raise ValueError(f"Invalid trace id: {self.trace_id!r}")
        if not is_valid_span_id(self.span_id):
            raise ValueError(f"Invalid span id: {self.span_id!r}")
        if self.parent_span_id is not None and not is_valid_span_id(self.parent_span_id):
            raise ValueError(f"Invalid parent span id: {self.parent_span_id!r}")

    @classmethod
    def new_root(cls, sampled: bool = True) -> TraceContext:
        """Start a new trace."""
        return cls(trace_id=generate_trace_id(), span_id=generate_span_id(), sampled=sampled)

    def child(self) -> TraceContext:
        """Create the context of a child span within this trace."""
        return TraceContext(
            trace_id=self.trace_id,
            span_id=generate_span_id(),
            parent_span_id=self.span_id,
            sampled=self.sampled,
        )

    @property
    def trace_id_hex(self) -> str:
        return format_trace_id(self.trace_id)

    @property
    def span_id_hex(self) -> str:
        return format_span_id(self.span_id)

    @property
    def parent_span_id_hex(self) -> str | None:
        if self.parent_span_id is None:
            return None
        return format_span_id(self.parent_span_id)


@dataclass(frozen=True)
class SpanEvent:
    """A timestamped event attached to a span."""

    name: str
    timestamp_ns: int
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))


def _coerce_attribute(value: Any) -> AttributeValue:
    if isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


class Span:
    """
    One unit of traced work.

    A span is owned by the task that opened it and may be mutated until
    ``end()`` is called. After that it is frozen and handed to the layer chain.
    Mutations on an ended span are ignored.
    """

    def __init__(
        self,
        name: str,
        context: TraceContext,
        *,
        level: Level = Level.INFO,
        target: str = DEFAULT_TARGET,
        attributes: Mapping[str, Any] | None = None,
        start_time_ns: int | None = None,
    ) -> None:
        self.name = name
        self.context = context
        self.level = level
        self.target = target
        self.start_time_ns = start_time_ns if start_time_ns is not None else time.time_ns()
        self.end_time_ns: int | None = None
        self._status = SpanStatus()
        self._attributes: dict[str, AttributeValue] = {}
        self._events: list[SpanEvent] = []
        self._ended = False
        # Set when the layer chain admitted the span at start
        self.recording = False
        # Set when an active pipeline filtered the span out at start
        self.vetoed = False
        if attributes:
            self.set_attributes(attributes)

    def __repr__(self) -> str:
        return (
            f"Span(name={self.name!r}, trace_id={self.context.trace_id_hex}, "
            f"span_id={self.context.span_id_hex}, ended={self._ended})"
        )

    @property
    def is_ended(self) -> bool:
        return self._ended

    @property
    def status(self) -> SpanStatus:
        return self._status

    @property
    def attributes(self) -> Mapping[str, AttributeValue]:
        return MappingProxyType(self._attributes)

    @property
    def events(self) -> tuple[SpanEvent, ...]:
        return tuple(self._events)

    @property
    def duration_ns(self) -> int | None:
        if self.end_time_ns is None:
            return None
        return self.end_time_ns - self.start_time_ns

    def _check_open(self, operation: str) -> bool:
        if self._ended:
            logger.debug(f"Ignoring {operation} on ended span {self.name}")
            return False
        return True

    def set_attribute(self, key: str, value: Any) -> None:
        if self._check_open("set_attribute"):
            self._attributes[key] = _coerce_attribute(value)

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        for key, value in attributes.items():
            self.set_attribute(key, value)

    def add_event(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        timestamp_ns: int | None = None,
    ) -> None:
        if not self._check_open("add_event"):
            return
        self._events.append(
            SpanEvent(
                name=name,
                timestamp_ns=timestamp_ns if timestamp_ns is not None else time.time_ns(),
                attributes={k: _coerce_attribute(v) for k, v in (attributes or {}).items()},
            )
        )

    def set_status(self, code: StatusCode, message: str = "") -> None:
        if not self._check_open("set_status"):
            return
        # An Ok status is final; an Error status is not downgraded to Unset.
        if self._status.code == StatusCode.OK:
            return
        if code == StatusCode.UNSET and self._status.code == StatusCode.ERROR:
            return
        self._status = SpanStatus(code=code, message=message)

    def record_exception(self, exc: BaseException) -> None:
        """Record an exception as an ``exception`` event and mark the span as failed."""
        self.add_event(
            "exception",
            {
                "exception.type": type(exc).__qualname__,
                "exception.message": str(exc),
                "exception.stacktrace": "".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
            },
        )
        self.set_status(StatusCode.ERROR, f"{type(exc).__qualname__}: {exc}")

    def end(self, end_time_ns: int | None = None) -> bool:
        """
        Close the span.

        Returns:
            True if this call closed the span, False if it was already closed
        """
        if self._ended:
            return False
        self.end_time_ns = end_time_ns if end_time_ns is not None else time.time_ns()
        self._ended = True
        return True


@dataclass(frozen=True)
class ErrorContextSnapshot:
    """
    Description of the span chain active when an error was recorded.

    Holds only ids and names, so it stays valid after the spans have closed.
    """

    trace_id: int | None = None
    span_names: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.span_names

    def __str__(self) -> str:
        return " > ".join(self.span_names)


@dataclass(frozen=True)
class LogRecord:
    """A single diagnostic line. Immutable once constructed."""

    level: Level
    message: str
    target: str = DEFAULT_TARGET
    fields: Mapping[str, Any] = field(default_factory=dict)
    timestamp_ns: int = field(default_factory=time.time_ns)
    context: TraceContext | None = None
    error_context: ErrorContextSnapshot | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


@dataclass(frozen=True)
class ExportBatch:
    """A bounded, ordered group of closed spans queued for one delivery."""

    spans: tuple[Span, ...]
    sequence: int = 0
    created_at: float = field(default_factory=time.monotonic)

    def __len__(self) -> int:
        return len(self.spans)
