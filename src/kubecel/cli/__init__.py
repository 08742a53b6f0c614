"""CLI utilities for kubecel.

This package provides the click commands plus their shared context and
output helpers.
"""

from __future__ import annotations

from kubecel.cli.context import CLIContext, ExitCode

__all__ = [
    "CLIContext",
    "ExitCode",
]
