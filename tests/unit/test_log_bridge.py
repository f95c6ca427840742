"""Tests for the stdlib logging bridge and the package logger."""

from __future__ import annotations

import io
import logging

import pytest

from tracewire.core.log_bridge import (
    PipelineLogHandler,
    install_log_bridge,
    level_from_stdlib,
    remove_log_bridge,
)
from tracewire.core.logger import configure_logger, get_log_level, reset_logger, set_log_level
from tracewire.core.types import Level


class TestLevelMapping:
    """Tests for level_from_stdlib."""

    @pytest.mark.parametrize(
        "levelno, expected",
        [
            (logging.CRITICAL, Level.ERROR),
            (logging.ERROR, Level.ERROR),
            (logging.WARNING, Level.WARN),
            (logging.INFO, Level.INFO),
            (logging.DEBUG, Level.DEBUG),
            (5, Level.TRACE),
        ],
    )
    def test_mapping(self, levelno, expected):
        assert level_from_stdlib(levelno) == expected


class TestPipelineLogHandler:
    """Tests for PipelineLogHandler."""

    def _logger(self, handler: logging.Handler, name: str = "myapp") -> logging.Logger:
        log = logging.getLogger(name)
        log.addHandler(handler)
        log.setLevel(logging.DEBUG)
        return log

    def test_forwards_message_target_and_extra_fields(self, mocker):
        pipeline = mocker.Mock()
        handler = PipelineLogHandler(pipeline)
        log = self._logger(handler)
        try:
            log.info("user %s logged in", "ada", extra={"ip": "10.0.0.1"})
        finally:
            log.removeHandler(handler)

        pipeline.log.assert_called_once_with(
            Level.INFO, "user ada logged in", target="myapp", fields={"ip": "10.0.0.1"}
        )

    def test_exception_is_rendered_into_a_field(self, mocker):
        pipeline = mocker.Mock()
        handler = PipelineLogHandler(pipeline)
        log = self._logger(handler)
        try:
            try:
                raise RuntimeError("db down")
            except RuntimeError:
                log.exception("query failed")
        finally:
            log.removeHandler(handler)

        fields = pipeline.log.call_args.kwargs["fields"]
        assert "RuntimeError: db down" in fields["exception"]
        assert pipeline.log.call_args.args[0] == Level.ERROR

    def test_ignores_tracewire_namespace(self, mocker):
        pipeline = mocker.Mock()
        handler = PipelineLogHandler(pipeline)
        log = self._logger(handler, "tracewire.core.batch_processor")
        try:
            log.warning("internal")
        finally:
            log.removeHandler(handler)

        pipeline.log.assert_not_called()

    def test_pipeline_errors_do_not_escape(self, mocker):
        pipeline = mocker.Mock()
        pipeline.log.side_effect = RuntimeError("broken")
        handler = PipelineLogHandler(pipeline)
        handle_error = mocker.patch.object(handler, "handleError")
        log = self._logger(handler)
        try:
            log.error("still fine")
        finally:
            log.removeHandler(handler)

        handle_error.assert_called_once()

    def test_install_and_remove(self, mocker):
        handler = install_log_bridge(mocker.Mock())
        try:
            assert handler in logging.getLogger().handlers
        finally:
            remove_log_bridge(handler)
        assert handler not in logging.getLogger().handlers


class TestPackageLogger:
    """Tests for the side-channel logger configuration."""

    def teardown_method(self):
        reset_logger()

    def test_configure_writes_prefixed_lines(self):
        stream = io.StringIO()
        configure_logger("debug", prefix="Test", stream=stream)
        logging.getLogger("tracewire.core.test").debug("hello")
        assert stream.getvalue() == "[Test] DEBUG hello\n"

    def test_level_filters_messages(self):
        stream = io.StringIO()
        configure_logger("warn", stream=stream)
        logging.getLogger("tracewire.x").info("hidden")
        logging.getLogger("tracewire.x").warning("shown")
        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()
        assert get_log_level() == "warn"

    def test_silent(self):
        stream = io.StringIO()
        configure_logger("silent", stream=stream)
        logging.getLogger("tracewire.x").error("nothing")
        assert stream.getvalue() == ""

    def test_does_not_propagate_to_root(self):
        configure_logger("info", stream=io.StringIO())
        assert logging.getLogger("tracewire").propagate is False

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            set_log_level("loud")  # type: ignore[arg-type]
