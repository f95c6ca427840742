"""Layer interface and the ordered chain that drives it."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..metrics import ExporterDiagnostics
    from ..types import LogRecord, Span

logger = logging.getLogger(__name__)


class Layer:
    """
    An independent observer of the diagnostic event stream.

    Callbacks run synchronously on the emitting task and must never block:
    anything slow has to be handed off without waiting on it.
    """

    name = "layer"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def on_span_start(self, span: Span) -> None:
        pass

    def on_span_end(self, span: Span) -> None:
        pass

    def on_log_record(self, record: LogRecord) -> LogRecord | None:
        """
        Observe a log record.

        Returns:
            A replacement record for the layers that follow, or None to pass
            the record on unchanged
        """
        return None

    def shutdown(self) -> None:
        pass


class FilterLayer(Layer):
    """A layer that may veto an event. A vetoed event reaches no later layer."""

    name = "filter"

    def accepts_span(self, span: Span) -> bool:
        return True

    def accepts_record(self, record: LogRecord) -> bool:
        return True


class LayerChain:
    """
    A fixed, ordered sequence of layers.

    Every event is offered to the layers in registration order. Only a
    FilterLayer may stop an event; an exception raised by any layer is
    reported on the side channel and the next layer still runs.
    """

    def __init__(
        self,
        layers: Iterable[Layer],
        diagnostics: ExporterDiagnostics | None = None,
    ) -> None:
        self._layers: tuple[Layer, ...] = tuple(layers)
        self._diagnostics = diagnostics
        self._failed_layers: set[str] = set()

    def __repr__(self) -> str:
        return f"LayerChain(layers={[layer.name for layer in self._layers]})"

    def __len__(self) -> int:
        return len(self._layers)

    @property
    def layers(self) -> tuple[Layer, ...]:
        return self._layers

    def dispatch_span_start(self, span: Span) -> bool:
        """
        Offer a newly opened span to every layer.

        Returns:
            False if a filter vetoed the span
        """
        for layer in self._layers:
            if isinstance(layer, FilterLayer):
                if not self._guard(layer, layer.accepts_span, span, default=True):
                    return False
                continue
            self._guard(layer, layer.on_span_start, span)
        return True

    def dispatch_span_end(self, span: Span) -> bool:
        for layer in self._layers:
            if isinstance(layer, FilterLayer):
                if not self._guard(layer, layer.accepts_span, span, default=True):
                    return False
                continue
            self._guard(layer, layer.on_span_end, span)
        return True

    def dispatch_log_record(self, record: LogRecord) -> LogRecord | None:
        """
        Offer a log record to every layer.

        Returns:
            The record as seen by the last layer, or None if a filter vetoed it
        """
        for layer in self._layers:
            if isinstance(layer, FilterLayer):
                if not self._guard(layer, layer.accepts_record, record, default=True):
                    return None
                continue
            replacement = self._guard(layer, layer.on_log_record, record)
            if replacement is not None:
                record = replacement
        return record

    def shutdown(self) -> None:
        for layer in self._layers:
            try:
                layer.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down layer {layer.name}: {e}")

    def _guard(self, layer: Layer, callback, event, default=None):
        try:
            return callback(event)
        except Exception as e:
            if self._diagnostics is not None:
                self._diagnostics.record_layer_error()
            if layer.name not in self._failed_layers:
                self._failed_layers.add(layer.name)
                logger.warning(f"Layer {layer.name} failed while handling an event: {e}", exc_info=e)
            else:
                logger.debug(f"Layer {layer.name} failed again: {e}")
            return default
