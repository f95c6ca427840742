"""Utilities for serializing export batches into OTLP protos."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
from opentelemetry.proto.common.v1.common_pb2 import AnyValue, InstrumentationScope, KeyValue
from opentelemetry.proto.resource.v1.resource_pb2 import Resource
from opentelemetry.proto.trace.v1.trace_pb2 import ResourceSpans, ScopeSpans
from opentelemetry.proto.trace.v1.trace_pb2 import Span as ProtoSpan
from opentelemetry.proto.trace.v1.trace_pb2 import Status as ProtoStatus

from ..version import INSTRUMENTATION_SCOPE_NAME, SDK_VERSION
from .types import ExportBatch, Span

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _to_any_value(value: Any) -> AnyValue:
    # bool is checked first: it is also an int
    if isinstance(value, bool):
        return AnyValue(bool_value=value)
    if isinstance(value, int) and _INT64_MIN <= value <= _INT64_MAX:
        return AnyValue(int_value=value)
    if isinstance(value, float):
        return AnyValue(double_value=value)
    return AnyValue(string_value=str(value))


def _to_key_values(attributes: Mapping[str, Any]) -> list[KeyValue]:
    return [KeyValue(key=key, value=_to_any_value(value)) for key, value in attributes.items()]


def build_resource(service_name: str) -> Resource:
    return Resource(
        attributes=_to_key_values(
            {
                "service.name": service_name,
                "telemetry.sdk.name": INSTRUMENTATION_SCOPE_NAME,
                "telemetry.sdk.language": "python",
                "telemetry.sdk.version": SDK_VERSION,
            }
        )
    )


def span_to_proto(span: Span) -> ProtoSpan:
    """Convert a closed Span into an OTLP Span message."""
    context = span.context
    attributes = {"tracewire.level": span.level.name, "tracewire.target": span.target}
    attributes.update(span.attributes)

    return ProtoSpan(
        trace_id=context.trace_id.to_bytes(16, "big"),
        span_id=context.span_id.to_bytes(8, "big"),
        parent_span_id=(
            context.parent_span_id.to_bytes(8, "big") if context.parent_span_id is not None else b""
        ),
        name=span.name,
        kind=ProtoSpan.SpanKind.SPAN_KIND_INTERNAL,
        start_time_unix_nano=span.start_time_ns,
        end_time_unix_nano=span.end_time_ns or span.start_time_ns,
        attributes=_to_key_values(attributes),
        events=[
            ProtoSpan.Event(
                time_unix_nano=event.timestamp_ns,
                name=event.name,
                attributes=_to_key_values(event.attributes),
            )
            for event in span.events
        ],
        status=ProtoStatus(code=span.status.code.value, message=span.status.message),
    )


def batch_to_proto(batch: ExportBatch, service_name: str) -> ExportTraceServiceRequest:
    """Convert an ExportBatch into an OTLP ExportTraceServiceRequest, preserving span order."""
    return ExportTraceServiceRequest(
        resource_spans=[
            ResourceSpans(
                resource=build_resource(service_name),
                scope_spans=[
                    ScopeSpans(
                        scope=InstrumentationScope(
                            name=INSTRUMENTATION_SCOPE_NAME, version=SDK_VERSION
                        ),
                        spans=[span_to_proto(span) for span in batch.spans],
                    )
                ],
            )
        ]
    )
