"""Severity and scope filtering.

Directives follow the familiar ``level,target=level`` form::

    "info"                          admit INFO and above everywhere
    "warn,myapp.db=debug"           WARN by default, DEBUG under myapp.db
    "debug,noisy.client=off"        silence one scope entirely

Targets match on dotted boundaries and the most specific directive wins.
Without a bare level, events outside every listed scope must be ERROR.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, override

from ..errors import ConfigurationError
from ..types import Level
from .base import FilterLayer

if TYPE_CHECKING:
    from ..types import LogRecord, Span

OFF = "off"


@dataclass(frozen=True)
class FilterDirective:
    """Minimum level for one target prefix. A level of None means off."""

    target: str | None
    level: Level | None

    def matches(self, target: str) -> bool:
        if self.target is None:
            return True
        return target == self.target or target.startswith(self.target + ".")


def _parse_level(value: str, directive: str) -> Level | None:
    if value.strip().lower() == OFF:
        return None
    try:
        return Level.parse(value)
    except ConfigurationError:
        raise ConfigurationError(
            "severity_filter", f"unknown level '{value}' in directive '{directive}'"
        ) from None


def parse_filter_directives(spec: str) -> tuple[Level | None, tuple[FilterDirective, ...]]:
    """
    Parse a filter string.

    Returns:
        The default level and the scoped directives, most specific first
    """
    if not spec or not spec.strip():
        raise ConfigurationError("severity_filter", "filter must not be empty")

    default: Level | None = Level.ERROR
    scoped: dict[str, FilterDirective] = {}
    for raw in spec.split(","):
        directive = raw.strip()
        if not directive:
            continue
        if "=" in directive:
            target, _, level = directive.partition("=")
            target = target.strip()
            if not target or any(part == "" for part in target.split(".")):
                raise ConfigurationError("severity_filter", f"invalid target in directive '{directive}'")
            scoped[target] = FilterDirective(target=target, level=_parse_level(level, directive))
        else:
            default = _parse_level(directive, directive)

    ordered = sorted(scoped.values(), key=lambda d: d.target.count(".") if d.target else -1, reverse=True)
    # Equal depth cannot both match one target, so depth order is enough
    return default, tuple(ordered)


class SeverityFilterLayer(FilterLayer):
    """Vetoes spans and log records below the configured level for their scope."""

    name = "filter"

    def __init__(self, spec: str = "trace") -> None:
        self._spec = spec
        self._default, self._directives = parse_filter_directives(spec)

    def __repr__(self) -> str:
        return f"SeverityFilterLayer(spec={self._spec!r})"

    @property
    def spec(self) -> str:
        return self._spec

    def min_level_for(self, target: str) -> Level | None:
        for directive in self._directives:
            if directive.matches(target):
                return directive.level
        return self._default

    def enabled(self, level: Level, target: str) -> bool:
        minimum = self.min_level_for(target)
        return minimum is not None and level >= minimum

    @override
    def accepts_span(self, span: Span) -> bool:
        return self.enabled(span.level, span.target)

    @override
    def accepts_record(self, record: LogRecord) -> bool:
        return self.enabled(record.level, record.target)
