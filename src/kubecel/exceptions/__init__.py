"""kubecel exception hierarchy.

Expression-level failures (parse, unsupported syntax, reference resolution,
validation) live in :mod:`kubecel.expressions.errors`; this package holds
the root class and the errors shared across subsystems.

    from kubecel.exceptions import ConfigError, KubecelError
"""

from __future__ import annotations

from kubecel.exceptions.base import KubecelError
from kubecel.exceptions.config import ConfigError

__all__ = [
    "KubecelError",
    "ConfigError",
]
