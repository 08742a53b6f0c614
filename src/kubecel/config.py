from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any, Literal, Self

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kubecel.exceptions import ConfigError
from kubecel.expressions.cache import CacheOptions
from kubecel.expressions.context import FactoryMode
from kubecel.logging import get_logger

__all__ = [
    "KubecelConfig",
    "CacheConfig",
    "OrchestratorConfig",
    "AnalysisConfig",
    "load_config",
    "get_user_config_path",
]

logger = get_logger(__name__)

PROJECT_CONFIG_NAME = "kubecel.yaml"

_project_config_path: ContextVar[Path | None] = ContextVar(
    "kubecel_project_config_path", default=None
)


class CacheConfig(BaseModel):
    """Settings for the expression cache.

    Attributes:
        max_entries: Entry-count budget per store.
        max_memory_mb: Byte budget per store, in megabytes.
        ttl_seconds: Age after which cached results are ignored.
        cleanup_interval_seconds: Background sweep period; 0 disables it.
        enable_ast_cache: Cache parsed trees as well as results.
        enable_metrics: Record retrieval timings.
    """

    max_entries: int = Field(default=1000, ge=1, le=1_000_000)
    max_memory_mb: float = Field(default=50, gt=0, le=4096)
    ttl_seconds: float = Field(default=300, gt=0)
    cleanup_interval_seconds: float = Field(default=0, ge=0)
    enable_ast_cache: bool = True
    enable_metrics: bool = True

    def to_options(self) -> CacheOptions:
        return CacheOptions(
            max_entries=self.max_entries,
            max_memory_mb=self.max_memory_mb,
            ttl_seconds=self.ttl_seconds,
            cleanup_interval_seconds=self.cleanup_interval_seconds,
            enable_ast_cache=self.enable_ast_cache,
            enable_metrics=self.enable_metrics,
        )


class OrchestratorConfig(BaseModel):
    """Settings for lazy, pooled and parallel analysis."""

    max_concurrency: int = Field(default=4, ge=1, le=64)
    min_concurrency: int = Field(default=1, ge=1, le=64)
    adaptive_threshold_ms: float = Field(default=100, gt=0)
    batch_size: int = Field(default=10, ge=1, le=1000)
    memory_limit_mb: float = Field(default=50, gt=0)
    cleanup_threshold: float = Field(default=0.8, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def check_concurrency_bounds(self) -> Self:
        if self.min_concurrency > self.max_concurrency:
            raise ValueError("min_concurrency must not exceed max_concurrency")
        return self


class AnalysisConfig(BaseModel):
    """Defaults for analysis contexts built by the CLI."""

    factory_mode: FactoryMode = FactoryMode.KRO
    strict: bool = False


class YamlConfigSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from YAML files."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file = yaml_file
        self._config_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            try:
                with open(yaml_file) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(
                    message=f"Invalid YAML in {yaml_file}: {e}",
                    field=None,
                    value=None,
                ) from e
            if loaded is None:
                logger.warning("config_file_empty", path=str(yaml_file))
            elif not isinstance(loaded, dict):
                raise ConfigError(
                    message=f"Config file {yaml_file} must contain a mapping",
                    field=None,
                    value=loaded,
                )
            else:
                self._config_data = loaded

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        """Get value for a specific field from the YAML config."""
        if field_name in self._config_data:
            return self._config_data[field_name], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        """Return the complete config data."""
        return self._config_data


class KubecelConfig(BaseSettings):
    """Root configuration object containing all kubecel settings."""

    model_config = SettingsConfigDict(
        env_prefix="KUBECEL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    verbosity: Literal["error", "warning", "info", "debug"] = "warning"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources.

        Priority (highest to lowest):
        1. Init arguments
        2. Environment variables (KUBECEL_*)
        3. Project YAML config (./kubecel.yaml, or the path given to load_config)
        4. User YAML config (~/.config/kubecel/config.yaml)
        """
        project_config_path = _project_config_path.get() or Path.cwd() / PROJECT_CONFIG_NAME
        return (
            init_settings,
            env_settings,
            YamlConfigSource(settings_cls, project_config_path),
            YamlConfigSource(settings_cls, get_user_config_path()),
        )


def get_user_config_path() -> Path:
    """Get the path to the user configuration file.

    Returns:
        Path to ~/.config/kubecel/config.yaml
    """
    return Path.home() / ".config" / "kubecel" / "config.yaml"


def load_config(config_path: Path | None = None) -> KubecelConfig:
    """Load configuration with hierarchy: defaults -> user -> project -> env.

    Args:
        config_path: Optional path to the project config file. Defaults to
            ./kubecel.yaml

    Returns:
        KubecelConfig instance with merged configuration

    Raises:
        ConfigError: If a config file is not valid YAML or a value fails
            validation.
    """
    if config_path is None:
        config_path = Path.cwd() / PROJECT_CONFIG_NAME
    elif not config_path.exists():
        raise ConfigError(
            message=f"Config file not found: {config_path}",
            field=None,
            value=str(config_path),
        )

    if not config_path.exists():
        logger.debug("project_config_missing", path=str(config_path))

    token = _project_config_path.set(config_path)
    try:
        return KubecelConfig()
    except ValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error["loc"])
        raise ConfigError(
            message=f"Invalid configuration: {first_error['msg']}",
            field=field,
            value=first_error.get("input"),
        ) from e
    finally:
        _project_config_path.reset(token)
