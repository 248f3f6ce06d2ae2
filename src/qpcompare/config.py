"""
Configuration system for qpcompare.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional config file (JSON or YAML) for local development

The configuration is read once, at the edge (the CLI). Library code never
calls get_config(): the comparator and service take their settings as
explicit arguments, derived with `canonical_options()` and
`loader_limits()`.

Usage:
    from qpcompare.config import get_config

    config = get_config()
    service = ComparisonService.from_config(legacy, native, config)
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from qpcompare.canonical import CanonicalOptions
from qpcompare.compare import CompareMode
from qpcompare.exceptions import ConfigurationError
from qpcompare.loader.config import LoaderConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "QPCOMPARE_"
CONFIG_FILE_ENV = "QPCOMPARE_CONFIG_FILE"


class Config(BaseModel):
    """
    qpcompare configuration.

    Loaded from environment variables or a config file.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Comparison
    default_mode: CompareMode = Field(
        default=CompareMode.EXHAUSTIVE,
        description="Comparison mode when the CLI is not told otherwise",
    )

    # Canonicalization
    positional_variables: bool = Field(
        default=True,
        description="Rename interchangeable operation variables positionally",
    )
    inline_fragments: bool = Field(
        default=False,
        description="Expand named fragments before comparing operations",
    )

    # Planner execution
    parallel_planners: bool = Field(
        default=True,
        description="Run legacy and native planners concurrently",
    )
    planner_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for one external planner invocation",
    )

    # Loader limits
    max_file_size_mb: float = Field(default=50.0, gt=0, description="Maximum plan file size")
    max_nodes: int = Field(default=20_000, gt=0, description="Maximum plan nodes")
    max_depth: int = Field(default=200, gt=0, description="Maximum plan nesting")

    # Logging
    log_level: str = Field(default="WARNING", description="Root log level for the CLI")

    def canonical_options(self) -> CanonicalOptions:
        return CanonicalOptions(
            positional_variables=self.positional_variables,
            inline_fragments=self.inline_fragments,
        )

    def loader_limits(self) -> LoaderConfig:
        return LoaderConfig(
            max_file_size_mb=self.max_file_size_mb,
            max_nodes=self.max_nodes,
            max_depth=self.max_depth,
        )


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%s", name, value)
        return default


def _parse_env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%s", name, value)
        return default


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Examples:
    - QPCOMPARE_DEFAULT_MODE=fail_fast
    - QPCOMPARE_POSITIONAL_VARIABLES=false
    - QPCOMPARE_PLANNER_TIMEOUT_SECONDS=120
    - QPCOMPARE_LOG_LEVEL=INFO

    Raises:
        ConfigurationError: If a value is present but invalid.
    """
    defaults = Config()
    mode = os.environ.get(f"{ENV_PREFIX}DEFAULT_MODE", defaults.default_mode.value)
    try:
        default_mode = CompareMode(mode.lower())
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown comparison mode {mode!r} (expected fail_fast or exhaustive)",
            config_key="default_mode",
        ) from e

    config_kwargs: dict[str, Any] = {
        "default_mode": default_mode,
        "positional_variables": _parse_env_bool(
            os.environ.get(f"{ENV_PREFIX}POSITIONAL_VARIABLES"), defaults.positional_variables
        ),
        "inline_fragments": _parse_env_bool(
            os.environ.get(f"{ENV_PREFIX}INLINE_FRAGMENTS"), defaults.inline_fragments
        ),
        "parallel_planners": _parse_env_bool(
            os.environ.get(f"{ENV_PREFIX}PARALLEL_PLANNERS"), defaults.parallel_planners
        ),
        "planner_timeout_seconds": _parse_env_float(
            f"{ENV_PREFIX}PLANNER_TIMEOUT_SECONDS", defaults.planner_timeout_seconds
        ),
        "max_file_size_mb": _parse_env_float(
            f"{ENV_PREFIX}MAX_FILE_SIZE_MB", defaults.max_file_size_mb
        ),
        "max_nodes": _parse_env_int(f"{ENV_PREFIX}MAX_NODES", defaults.max_nodes),
        "max_depth": _parse_env_int(f"{ENV_PREFIX}MAX_DEPTH", defaults.max_depth),
        "log_level": os.environ.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level).upper(),
    }

    return _build(config_kwargs, "environment")


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    A missing file falls back to environment variables; a file that exists
    but is invalid raises ConfigurationError.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    return _build(data, str(path))


def _build(data: dict[str, Any], origin: str) -> Config:
    try:
        return Config(**data)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(x) for x in first["loc"]) or None
        raise ConfigurationError(
            f"Invalid configuration from {origin}: {first['msg']}",
            config_key=key,
        ) from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. QPCOMPARE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get(CONFIG_FILE_ENV)

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
