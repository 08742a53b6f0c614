from __future__ import annotations

import os
from pathlib import Path

import pytest

from kubecel.config import CacheConfig, KubecelConfig, OrchestratorConfig, load_config
from kubecel.exceptions import ConfigError
from kubecel.expressions.context import FactoryMode


def test_load_defaults_when_no_config(clean_env: None, temp_dir: Path) -> None:
    """Test that defaults are used when no config file exists."""
    os.chdir(temp_dir)

    config = load_config()
    assert isinstance(config, KubecelConfig)
    assert config.cache.max_entries == 1000
    assert config.cache.ttl_seconds == 300
    assert config.orchestrator.max_concurrency == 4
    assert config.analysis.factory_mode is FactoryMode.KRO
    assert config.verbosity == "warning"


def test_load_project_config(clean_env: None, temp_dir: Path, sample_config_yaml: str) -> None:
    """Test loading configuration from kubecel.yaml."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text(sample_config_yaml)

    config = load_config()
    assert config.cache.max_entries == 250
    assert config.cache.ttl_seconds == 60
    assert config.orchestrator.max_concurrency == 6
    assert config.orchestrator.batch_size == 5
    assert config.analysis.factory_mode is FactoryMode.DIRECT
    assert config.analysis.strict is True
    assert config.verbosity == "info"


def test_explicit_config_path(clean_env: None, temp_dir: Path, sample_config_yaml: str) -> None:
    """Test that --config style paths are honoured instead of ./kubecel.yaml."""
    os.chdir(temp_dir)
    custom = temp_dir / "custom.yaml"
    custom.write_text(sample_config_yaml)

    config = load_config(custom)
    assert config.cache.max_entries == 250


def test_missing_explicit_path_raises(clean_env: None, temp_dir: Path) -> None:
    """Test that a non-existent explicit path is an error."""
    with pytest.raises(ConfigError, match="not found"):
        load_config(temp_dir / "absent.yaml")


def test_env_var_overrides(clean_env: None, temp_dir: Path, sample_config_yaml: str) -> None:
    """Test that KUBECEL_* environment variables override config files."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text(sample_config_yaml)
    os.environ["KUBECEL_CACHE__MAX_ENTRIES"] = "42"
    os.environ["KUBECEL_VERBOSITY"] = "debug"

    config = load_config()
    assert config.cache.max_entries == 42
    assert config.cache.ttl_seconds == 60
    assert config.verbosity == "debug"


def test_user_config_below_project(
    clean_env: None, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that project settings win over user settings, which still fill gaps."""
    os.chdir(temp_dir)
    user_config = temp_dir / "user.yaml"
    user_config.write_text("cache:\n  ttl_seconds: 30\nverbosity: error\n")
    monkeypatch.setattr("kubecel.config.get_user_config_path", lambda: user_config)
    (temp_dir / "kubecel.yaml").write_text("verbosity: info\n")

    config = load_config()
    assert config.verbosity == "info"
    assert config.cache.ttl_seconds == 30


def test_invalid_config_raises_config_error(clean_env: None, temp_dir: Path) -> None:
    """Test that invalid configuration raises ConfigError."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text("orchestrator:\n  max_concurrency: 0\n")

    with pytest.raises(ConfigError) as exc_info:
        load_config()

    assert exc_info.value.field == "orchestrator.max_concurrency"
    assert exc_info.value.value == 0


def test_invalid_yaml_raises_config_error(clean_env: None, temp_dir: Path) -> None:
    """Test that malformed YAML raises ConfigError."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text("cache: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


def test_non_mapping_yaml_raises_config_error(clean_env: None, temp_dir: Path) -> None:
    """Test that a YAML list at the top level is rejected."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text("- a\n- b\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config()


def test_empty_yaml_uses_defaults(clean_env: None, temp_dir: Path) -> None:
    """Test that an empty file is accepted."""
    os.chdir(temp_dir)
    (temp_dir / "kubecel.yaml").write_text("")

    assert load_config().cache.max_entries == 1000


def test_concurrency_bounds_validated() -> None:
    """Test that min_concurrency above max_concurrency is rejected."""
    with pytest.raises(ValueError, match="min_concurrency"):
        OrchestratorConfig(max_concurrency=2, min_concurrency=3)


def test_cache_config_to_options() -> None:
    """Test conversion to the cache's own options record."""
    options = CacheConfig(max_entries=7).to_options()
    assert options.max_entries == 7
    assert options.enable_ast_cache is True
