"""Bridge from the standard library ``logging`` module into the pipeline."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, override

from .logger import PACKAGE_LOGGER_NAME
from .types import Level

if TYPE_CHECKING:
    from .pipeline import Pipeline

# Attributes every stdlib LogRecord has; anything else came in through `extra=`
_STANDARD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime", "taskName"}
)
_formatter = logging.Formatter()


def level_from_stdlib(levelno: int) -> Level:
    if levelno >= logging.ERROR:
        return Level.ERROR
    if levelno >= logging.WARNING:
        return Level.WARN
    if levelno >= logging.INFO:
        return Level.INFO
    if levelno >= logging.DEBUG:
        return Level.DEBUG
    return Level.TRACE


class PipelineLogHandler(logging.Handler):
    """
    Forwards stdlib log records to the pipeline as log records.

    Records from the ``tracewire`` namespace are ignored: they describe the
    pipeline itself and must not flow back into it.
    """

    def __init__(self, pipeline: Pipeline, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._pipeline = pipeline

    @override
    def handle(self, record: logging.LogRecord) -> bool:
        # No handler lock: the pipeline is safe for concurrent emission and the
        # lock would otherwise be held across console I/O
        if not self.filter(record):
            return False
        self.emit(record)
        return True

    @override
    def emit(self, record: logging.LogRecord) -> None:
        name = record.name
        if name == PACKAGE_LOGGER_NAME or name.startswith(PACKAGE_LOGGER_NAME + "."):
            return
        try:
            fields = {
                key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRIBUTES
            }
            if record.exc_info and record.exc_info[1] is not None:
                fields["exception"] = _formatter.formatException(record.exc_info)
            self._pipeline.log(
                level_from_stdlib(record.levelno),
                record.getMessage(),
                target=name,
                fields=fields,
            )
        except Exception:
            self.handleError(record)


def install_log_bridge(pipeline: Pipeline, level: int = logging.NOTSET) -> PipelineLogHandler:
    """Attach a PipelineLogHandler to the root logger."""
    handler = PipelineLogHandler(pipeline, level)
    logging.getLogger().addHandler(handler)
    return handler


def remove_log_bridge(handler: PipelineLogHandler) -> None:
    logging.getLogger().removeHandler(handler)
