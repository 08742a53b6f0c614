from __future__ import annotations

from typing import Any

from kubecel.exceptions.base import KubecelError


class ConfigError(KubecelError):
    """Raised when ``kubecel.yaml`` or ``KUBECEL_*`` settings cannot be used.

    Covers YAML syntax errors as well as pydantic validation failures.

    Attributes:
        message: Human-readable error message.
        field: Dotted name of the offending setting (e.g. ``cache.ttl_seconds``).
        value: The rejected value, when known.

    Examples:
        ```python
        raise ConfigError(
            "Invalid configuration: Input should be greater than 0",
            field="orchestrator.max_concurrency",
            value=0,
        )
        ```
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
    ) -> None:
        self.field = field
        self.value = value
        super().__init__(message)
