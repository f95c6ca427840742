"""Tests for W3C trace context inject/extract."""

from __future__ import annotations

import unittest

from tracewire.core.context import use_context
from tracewire.core.propagation import (
    TRACEPARENT_HEADER,
    TRACESTATE_HEADER,
    W3CTraceContextPropagator,
    extract,
    inject,
)
from tracewire.core.types import TraceContext


class TestInject(unittest.TestCase):
    """Tests for encoding a context into headers."""

    def test_traceparent_format(self):
        ctx = TraceContext(trace_id=0x0AF7651916CD43DD8448EB211C80319C, span_id=0xB7AD6B7169203331)
        headers = inject(ctx)
        self.assertEqual(
            headers[TRACEPARENT_HEADER],
            "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01",
        )
        self.assertNotIn(TRACESTATE_HEADER, headers)

    def test_unsampled_flag(self):
        ctx = TraceContext(trace_id=1, span_id=2, sampled=False)
        self.assertTrue(inject(ctx)[TRACEPARENT_HEADER].endswith("-00"))

    def test_parent_is_carried_in_tracestate(self):
        ctx = TraceContext(trace_id=1, span_id=2, parent_span_id=3)
        self.assertEqual(inject(ctx)[TRACESTATE_HEADER], "tw=0000000000000003")

    def test_defaults_to_ambient_context(self):
        ctx = TraceContext.new_root()
        with use_context(ctx):
            headers = inject()
        self.assertIn(ctx.trace_id_hex, headers[TRACEPARENT_HEADER])

    def test_empty_without_context(self):
        self.assertEqual(inject(), {})


class TestExtract(unittest.TestCase):
    """Tests for decoding headers into a context."""

    def test_round_trip(self):
        for ctx in (
            TraceContext.new_root(),
            TraceContext.new_root(sampled=False),
            TraceContext.new_root().child(),
        ):
            self.assertEqual(extract(inject(ctx)), ctx)

    def test_header_names_are_case_insensitive(self):
        ctx = TraceContext.new_root().child()
        headers = {key.title(): value for key, value in inject(ctx).items()}
        self.assertEqual(extract(headers), ctx)

    def test_missing_traceparent(self):
        self.assertIsNone(extract({}))
        self.assertIsNone(extract({"tracestate": "tw=0000000000000003"}))

    def test_malformed_traceparent(self):
        for value in (
            "garbage",
            "00-xyz-b7ad6b7169203331-01",
            "00-00000000000000000000000000000000-b7ad6b7169203331-01",
            "00-0af7651916cd43dd8448eb211c80319c-0000000000000000-01",
            "ff-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01",
            "00-0af7651916cd43dd8448eb211c80319c-b7ad6b71692033-01",
        ):
            with self.subTest(value=value):
                self.assertIsNone(extract({"traceparent": value}))

    def test_non_string_values_are_ignored(self):
        self.assertIsNone(extract({"traceparent": 42}))  # type: ignore[dict-item]

    def test_malformed_parent_state_is_dropped(self):
        ctx = TraceContext.new_root()
        headers = inject(ctx)
        headers["tracestate"] = "tw=nothex"
        extracted = extract(headers)
        self.assertIsNotNone(extracted)
        assert extracted is not None
        self.assertEqual(extracted.span_id, ctx.span_id)
        self.assertIsNone(extracted.parent_span_id)

    def test_propagator_fields(self):
        self.assertEqual(W3CTraceContextPropagator().fields, {"traceparent", "tracestate"})
