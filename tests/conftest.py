from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Generator, Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner

from kubecel.expressions.context import AnalysisContext


@pytest.fixture(autouse=True)
def configure_test_logging() -> Generator[None, None, None]:
    """Configure structlog for test environment.

    Logging goes to stderr at WARNING level so debug events emitted by the
    converter and cache do not mix with test output.
    """
    from kubecel.logging import configure_logging

    configure_logging(level=logging.WARNING)
    yield


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files.

    Also saves and restores the current working directory to prevent
    tests that use os.chdir() from affecting other tests.
    """
    original_cwd = os.getcwd()
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
    os.chdir(original_cwd)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Remove all KUBECEL_ environment variables and hide the user config."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("KUBECEL_"):
            del os.environ[key]
    monkeypatch.setattr(
        "kubecel.config.get_user_config_path",
        lambda: tmp_path / "no-user-config" / "config.yaml",
    )
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def web_context() -> AnalysisContext:
    """Context with a ``web`` deployment and an ``svc`` service in scope."""
    return AnalysisContext.for_resources(["web", "svc"])


@pytest.fixture
def sample_config_yaml() -> str:
    """Return sample kubecel.yaml content for testing."""
    return """
cache:
  max_entries: 250
  ttl_seconds: 60

orchestrator:
  max_concurrency: 6
  batch_size: 5

analysis:
  factory_mode: direct
  strict: true

verbosity: info
"""
