"""Pipeline configuration and config file loading.

Configuration precedence (highest to lowest):
1. Values passed to ``Pipeline.initialize`` / ``PipelineConfig``
2. Environment variables (TRACEWIRE_LOG, TRACEWIRE_ENDPOINT, ...)
3. YAML configuration (.tracewire/config.yaml at the project root)
4. Built-in defaults
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import IO, Any, get_args

import yaml

from .adapters.otlp import validate_endpoint
from .errors import ConfigurationError
from .layers.filter import parse_filter_directives
from .logger import LogLevel

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".tracewire"
CONFIG_FILE_NAME = "config.yaml"
PROJECT_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg", ".git")

ENV_FILTER = "TRACEWIRE_LOG"
ENV_ENDPOINT = "TRACEWIRE_ENDPOINT"
ENV_SERVICE_NAME = "TRACEWIRE_SERVICE_NAME"
ENV_EXPORT = "TRACEWIRE_EXPORT"

DEFAULT_ENDPOINT = "http://localhost:4318"
DEFAULT_SERVICE_NAME = "unknown_service"

# Expected types of options that may come from the config file or the caller
_OPTION_TYPES: dict[str, type | tuple[type, ...]] = {
    "severity_filter": str,
    "endpoint": str,
    "service_name": str,
    "max_batch_size": int,
    "max_batch_delay_seconds": (int, float),
    "max_queued_batches": int,
    "export_timeout_seconds": (int, float),
    "max_export_attempts": int,
    "export_enabled": bool,
    "console_enabled": bool,
    "console_span_events": bool,
    "ansi": bool,
    "log_level": str,
    "bridge_stdlib_logging": bool,
}


@dataclass
class PipelineConfig:
    """Everything needed to build the pipeline."""

    # Minimum level to admit, optionally scoped: "info,myapp.db=debug"
    severity_filter: str = "trace"
    endpoint: str = DEFAULT_ENDPOINT
    service_name: str = DEFAULT_SERVICE_NAME
    max_batch_size: int = 512
    max_batch_delay_seconds: float = 5.0
    # None means standard error, resolved at write time
    output_stream: IO[str] | None = None

    max_queued_batches: int = 64
    export_timeout_seconds: float = 30.0
    max_export_attempts: int = 3
    export_headers: dict[str, str] = field(default_factory=dict)
    export_enabled: bool = True
    console_enabled: bool = True
    console_span_events: bool = False
    ansi: bool = False
    log_level: LogLevel = "info"
    bridge_stdlib_logging: bool = False

    def validate(self) -> None:
        """
        Check every option that can be checked without side effects.

        Raises:
            ConfigurationError: On the first invalid option
        """
        self._check_types()
        parse_filter_directives(self.severity_filter)
        if self.export_enabled:
            validate_endpoint(self.endpoint)
        if not self.service_name:
            raise ConfigurationError("service_identity", "service name must not be empty")
        if self.max_batch_size < 1:
            raise ConfigurationError("max_batch_size", "must be at least 1")
        if self.max_batch_delay_seconds <= 0:
            raise ConfigurationError("max_batch_delay", "must be positive")
        if self.max_queued_batches < 1:
            raise ConfigurationError("max_queued_batches", "must be at least 1")
        if self.max_export_attempts < 1:
            raise ConfigurationError("max_export_attempts", "must be at least 1")
        if self.export_timeout_seconds <= 0:
            raise ConfigurationError("export_timeout", "must be positive")
        if self.log_level not in get_args(LogLevel):
            raise ConfigurationError("log_level", f"expected one of {list(get_args(LogLevel))}")

    def _check_types(self) -> None:
        for name, expected in _OPTION_TYPES.items():
            value = getattr(self, name)
            # Booleans are ints, but never valid counts or durations
            if not isinstance(value, expected) or (isinstance(value, bool) and expected is not bool):
                raise ConfigurationError(name, f"expected {_type_name(expected)}, got {type(value).__name__}")
        headers = self.export_headers
        if not isinstance(headers, Mapping) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in headers.items()
        ):
            raise ConfigurationError("export_headers", "expected a mapping of strings to strings")


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


@dataclass
class ServiceConfig:
    name: str | None = None


@dataclass
class FilterConfig:
    directives: str | None = None


@dataclass
class ExporterFileConfig:
    endpoint: str | None = None
    enabled: bool | None = None
    max_batch_size: int | None = None
    max_batch_delay_seconds: float | None = None
    max_queued_batches: int | None = None
    timeout_seconds: float | None = None
    max_attempts: int | None = None
    headers: dict[str, str] | None = None


@dataclass
class ConsoleConfig:
    enabled: bool | None = None
    ansi: bool | None = None
    span_events: bool | None = None


@dataclass
class TracewireFileConfig:
    """Contents of .tracewire/config.yaml. Missing sections are None."""

    service: ServiceConfig | None = None
    filter: FilterConfig | None = None
    exporter: ExporterFileConfig | None = None
    console: ConsoleConfig | None = None


def find_project_root(start: Path | None = None) -> Path | None:
    """
    Walk up from ``start`` (default: the working directory) to the first
    directory containing a project marker.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            return directory
    return None


def _section(cls: type, data: Any, name: str) -> Any:
    if data is None:
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config section '{name}': expected a mapping")
        return None
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in config section '{name}': {sorted(unknown)}")
    return cls(**{key: value for key, value in data.items() if key in known})


def load_tracewire_config(path: Path | None = None) -> TracewireFileConfig | None:
    """
    Load the YAML config file.

    Args:
        path: Explicit file path (default: .tracewire/config.yaml under the project root)

    Returns:
        The parsed config, or None if there is no file or it cannot be read
    """
    if path is None:
        root = find_project_root()
        if root is None:
            return None
        path = root / CONFIG_DIR_NAME / CONFIG_FILE_NAME

    if not path.is_file():
        return None

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {path}: {e}")
        return None

    if not isinstance(raw, dict):
        logger.warning(f"Ignoring config file {path}: top level must be a mapping")
        return None

    logger.debug(f"Loaded config file {path}")
    return TracewireFileConfig(
        service=_section(ServiceConfig, raw.get("service"), "service"),
        filter=_section(FilterConfig, raw.get("filter"), "filter"),
        exporter=_section(ExporterFileConfig, raw.get("exporter"), "exporter"),
        console=_section(ConsoleConfig, raw.get("console"), "console"),
    )


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(name, f"expected a boolean, got '{value}'")


def resolve_config(
    overrides: dict[str, Any] | None = None,
    file_config: TracewireFileConfig | None = None,
    environ: dict[str, str] | None = None,
) -> PipelineConfig:
    """
    Merge defaults, the config file, environment variables and explicit
    overrides into one PipelineConfig.

    Args:
        overrides: Explicit PipelineConfig field values (highest precedence)
        file_config: Parsed config file, if any
        environ: Environment mapping (default: os.environ)
    """
    environ = dict(os.environ) if environ is None else environ
    values: dict[str, Any] = {}

    if file_config is not None:
        if file_config.service and file_config.service.name:
            values["service_name"] = file_config.service.name
        if file_config.filter and file_config.filter.directives:
            values["severity_filter"] = file_config.filter.directives
        exporter = file_config.exporter
        if exporter is not None:
            for source, target in (
                ("endpoint", "endpoint"),
                ("enabled", "export_enabled"),
                ("max_batch_size", "max_batch_size"),
                ("max_batch_delay_seconds", "max_batch_delay_seconds"),
                ("max_queued_batches", "max_queued_batches"),
                ("timeout_seconds", "export_timeout_seconds"),
                ("max_attempts", "max_export_attempts"),
                ("headers", "export_headers"),
            ):
                value = getattr(exporter, source)
                if value is not None:
                    values[target] = value
        console = file_config.console
        if console is not None:
            for source, target in (
                ("enabled", "console_enabled"),
                ("ansi", "ansi"),
                ("span_events", "console_span_events"),
            ):
                value = getattr(console, source)
                if value is not None:
                    values[target] = value

    if environ.get(ENV_FILTER):
        values["severity_filter"] = environ[ENV_FILTER]
    if environ.get(ENV_ENDPOINT):
        values["endpoint"] = environ[ENV_ENDPOINT]
    if environ.get(ENV_SERVICE_NAME):
        values["service_name"] = environ[ENV_SERVICE_NAME]
    if environ.get(ENV_EXPORT):
        values["export_enabled"] = _parse_bool(environ[ENV_EXPORT], ENV_EXPORT)

    values.update(overrides or {})

    known = {f.name for f in fields(PipelineConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(", ".join(sorted(unknown)), "unknown configuration option")
    return replace(PipelineConfig(), **values)
