"""Ambient trace context for the currently executing thread or asyncio task.

State lives in ``contextvars`` so every thread and every asyncio task sees its
own ambient context. Scopes are always restored through the variable token, on
normal exit, on exceptions and on cancellation alike.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, TypeVar

from .types import ErrorContextSnapshot, TraceContext

if TYPE_CHECKING:
    from .types import Span

T = TypeVar("T")

current_trace_context: ContextVar[TraceContext | None] = ContextVar(
    "tracewire_trace_context", default=None
)
# Open spans of the current task, oldest first
active_spans: ContextVar[tuple["Span", ...]] = ContextVar("tracewire_active_spans", default=())


def current() -> TraceContext | None:
    """Return the ambient trace context of the calling task, if any."""
    return current_trace_context.get()


def current_span() -> Span | None:
    """Return the innermost open span of the calling task, if any."""
    spans = active_spans.get()
    return spans[-1] if spans else None


@contextmanager
def use_context(context: TraceContext | None) -> Iterator[TraceContext | None]:
    """
    Make ``context`` the ambient trace context for the duration of the block.

    Spans opened inside the block become children of ``context``. The open
    span chain is cleared, since it belongs to whoever set the outer context.
    """
    context_token = current_trace_context.set(context)
    spans_token = active_spans.set(())
    try:
        yield context
    finally:
        active_spans.reset(spans_token)
        current_trace_context.reset(context_token)


def run_in_context(
    context: TraceContext | None, body: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Call ``body`` with ``context`` as the ambient trace context."""
    with use_context(context):
        return body(*args, **kwargs)


@contextmanager
def enter_span(span: Span) -> Iterator[Span]:
    """Make ``span`` the innermost open span and its context the ambient one."""
    context_token = current_trace_context.set(span.context)
    spans_token = active_spans.set(active_spans.get() + (span,))
    try:
        yield span
    finally:
        active_spans.reset(spans_token)
        current_trace_context.reset(context_token)


def capture_error_context() -> ErrorContextSnapshot:
    """
    Snapshot the currently open span chain.

    The snapshot holds the trace id and the span names, oldest ancestor
    first. It only reads context variables and never blocks.
    """
    context = current_trace_context.get()
    spans = active_spans.get()
    return ErrorContextSnapshot(
        trace_id=context.trace_id if context is not None else None,
        span_names=tuple(span.name for span in spans),
    )
