"""CLI context and exit codes."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from kubecel.config import KubecelConfig
from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.cache import ExpressionCache
from kubecel.expressions.context import AnalysisContext, FactoryMode

__all__ = [
    "ExitCode",
    "CLIContext",
]


class ExitCode(IntEnum):
    """Standard exit codes for the kubecel CLI.

    - 0 for success
    - 1 for failure (including an invalid conversion result)
    - 130 for keyboard interrupt (128 + SIGINT=2)
    """

    SUCCESS = 0
    FAILURE = 1
    INTERRUPTED = 130


@dataclass(frozen=True, slots=True)
class CLIContext:
    """Type-safe CLI context containing global options and configuration.

    Attributes:
        config: Loaded kubecel configuration.
        config_path: Path to config file (if specified via --config).
        verbosity: Verbosity level (0=default, 1=INFO, 2+=DEBUG).
        quiet: Suppress non-essential output.
    """

    config: KubecelConfig
    config_path: Path | None = None
    verbosity: int = 0
    quiet: bool = False

    def analysis_context(
        self, resources: Iterable[str], factory: str | None = None
    ) -> AnalysisContext:
        """Build an analysis context from configured defaults and CLI flags."""
        mode = FactoryMode(factory) if factory else self.config.analysis.factory_mode
        return AnalysisContext.for_resources(
            resources,
            factory_mode=mode,
            strict=self.config.analysis.strict,
        )

    def analyzer(self) -> ExpressionAnalyzer:
        return ExpressionAnalyzer(ExpressionCache(self.config.cache.to_options()))
