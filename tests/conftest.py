"""Pytest configuration and fixtures for tracewire tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from tracewire.core.adapters import InMemorySpanAdapter
    from tracewire.core.metrics import ExporterDiagnostics

_ENV_VARS = ("TRACEWIRE_LOG", "TRACEWIRE_ENDPOINT", "TRACEWIRE_SERVICE_NAME", "TRACEWIRE_EXPORT")


@pytest.fixture(autouse=True)
def reset_pipeline() -> Generator[None, None, None]:
    """Shut down any pipeline a test left behind and clear the singleton."""
    from tracewire.core.logger import reset_logger
    from tracewire.core.pipeline import Pipeline

    original_env = {name: os.environ.pop(name, None) for name in _ENV_VARS}
    yield
    instance = Pipeline._instance
    if instance is not None:
        instance.shutdown(timeout=5.0)
    Pipeline._instance = None
    Pipeline._initialized = False
    reset_logger()
    for name, value in original_env.items():
        if value is not None:
            os.environ[name] = value
        else:
            os.environ.pop(name, None)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def original_cwd() -> Generator[str, None, None]:
    """Save and restore the current working directory."""
    cwd = os.getcwd()
    yield cwd
    os.chdir(cwd)


@pytest.fixture
def in_memory_adapter() -> InMemorySpanAdapter:
    """Create a fresh InMemorySpanAdapter for testing."""
    from tracewire.core.adapters import InMemorySpanAdapter

    return InMemorySpanAdapter()


@pytest.fixture
def diagnostics() -> ExporterDiagnostics:
    """Create a fresh ExporterDiagnostics for testing."""
    from tracewire.core.metrics import ExporterDiagnostics

    return ExporterDiagnostics()
