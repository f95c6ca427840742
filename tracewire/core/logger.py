"""Logging for tracewire's own diagnostics.

Everything tracewire reports about itself goes to the ``tracewire`` logger.
That logger does not propagate to the root logger, so its records can never
be picked up by the stdlib bridge and fed back into the pipeline.
"""

from __future__ import annotations

import logging
import sys
from typing import Literal, TextIO

LogLevel = Literal["silent", "error", "warn", "info", "debug"]

PACKAGE_LOGGER_NAME = "tracewire"

_LEVELS: dict[str, int] = {
    "silent": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is at the time of each record."""

    def __init__(self) -> None:
        logging.Handler.__init__(self)

    @property
    def stream(self):
        return sys.stderr


_handler: logging.Handler | None = None
_current_level: LogLevel = "info"


def configure_logger(
    log_level: LogLevel = "info",
    prefix: str = "Tracewire",
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Install the side-channel handler on the ``tracewire`` logger.

    Calling this again replaces the previous handler.

    Args:
        log_level: One of silent, error, warn, info, debug
        prefix: Tag shown at the start of every line
        stream: Output stream (default: standard error)

    Returns:
        The configured package logger
    """
    global _handler
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)

    if _handler is not None:
        package_logger.removeHandler(_handler)

    _handler = logging.StreamHandler(stream) if stream is not None else _StderrHandler()
    _handler.setFormatter(logging.Formatter(f"[{prefix}] %(levelname)s %(message)s"))
    package_logger.addHandler(_handler)
    package_logger.propagate = False

    set_log_level(log_level)
    return package_logger


def set_log_level(log_level: LogLevel) -> None:
    """Change the side-channel log level."""
    global _current_level
    if log_level not in _LEVELS:
        raise ValueError(f"Unknown log level: {log_level!r}. Expected one of {sorted(_LEVELS)}")
    _current_level = log_level
    logging.getLogger(PACKAGE_LOGGER_NAME).setLevel(_LEVELS[log_level])


def get_log_level() -> LogLevel:
    return _current_level


def reset_logger() -> None:
    """Remove the side-channel handler and restore propagation."""
    global _handler, _current_level
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if _handler is not None:
        package_logger.removeHandler(_handler)
        _handler = None
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
    _current_level = "info"
