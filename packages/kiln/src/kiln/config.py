"""Pydantic configuration models for kiln.

This module provides:
- WrapperKind: Supported module wrapper styles
- BuildConfig: Settings consumed by BuildManifest
- load_config: Read BuildConfig from a kiln.yaml file

Example kiln.yaml:

    public_path: public
    file_list_interval: 65
    wrapper: commonjs
    conventions:
      assets: {pattern: 'assets[\\/]'}
      ignored:
        - {pattern: '[\\/]_'}
        - app/legacy/
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kiln.conventions import (
    DEFAULT_CONVENTIONS,
    DEFAULT_DEPENDENCY_DIR,
    ConventionTable,
    normalize_conventions,
)
from kiln.errors import ConfigError
from kiln.rules import Pattern

logger = structlog.get_logger(__name__)

CONFIG_FILENAME = "kiln.yaml"
"""Default configuration file name."""

DEFAULT_INTERVAL_MS = 65
"""Quiet period, in milliseconds, that closes one build."""


class WrapperKind(str, Enum):
    """Module wrapper styles applied to compiled scripts and templates."""

    COMMONJS = "commonjs"
    AMD = "amd"
    NONE = "none"


class BuildConfig(BaseModel):
    """Settings for one build session.

    Attributes:
        public_path: Directory assets are copied to.
        file_list_interval: Debounce interval in milliseconds.
        config_files: Paths that are always ignored (project config files).
        dependency_dir: Dependency namespace, never ignored.
        wrapper: Module wrapper style.
        conventions: Raw convention values keyed by name.

    Example:
        >>> config = BuildConfig(file_list_interval=100)
        >>> config.file_list_interval
        100
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    public_path: Path = Field(default=Path("public"), description="Asset output directory")
    file_list_interval: int = Field(
        default=DEFAULT_INTERVAL_MS,
        ge=1,
        le=60_000,
        description="Debounce interval in milliseconds",
    )
    config_files: tuple[str, ...] = Field(
        default=(CONFIG_FILENAME, "package.json", "bower.json"),
        description="Configuration files, always ignored",
    )
    dependency_dir: str = Field(
        default=DEFAULT_DEPENDENCY_DIR,
        min_length=1,
        description="Third-party package directory",
    )
    wrapper: WrapperKind = Field(default=WrapperKind.COMMONJS, description="Module wrapper")
    conventions: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_CONVENTIONS),
        description="Convention name to rule",
    )

    @field_validator("conventions")
    @classmethod
    def merge_default_conventions(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Fill in default conventions the user did not override."""
        return {**DEFAULT_CONVENTIONS, **v}

    def convention_table(self) -> ConventionTable:
        """Return the normalized convention table."""
        return normalize_conventions(self.conventions)


def load_config(path: Path | str) -> BuildConfig:
    """Load BuildConfig from a YAML file.

    Missing files yield the default configuration.

    Args:
        path: Path to kiln.yaml, or to the directory containing it.

    Returns:
        Validated BuildConfig.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    config_path = Path(path)
    if config_path.is_dir():
        config_path = config_path / CONFIG_FILENAME

    if not config_path.exists():
        logger.debug("config_not_found_using_defaults", path=str(config_path))
        return BuildConfig()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        msg = "Configuration file is not valid YAML"
        raise ConfigError(msg, file_path=str(config_path), internal_details=str(e)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = "Configuration must contain a mapping at the root"
        raise ConfigError(msg, file_path=str(config_path))

    raw_conventions = data.get("conventions") or {}
    if not isinstance(raw_conventions, dict):
        msg = "Conventions must be a mapping"
        raise ConfigError(msg, file_path=str(config_path), field_path="conventions")
    data["conventions"] = {
        name: _parse_rule(value, file_path=str(config_path), field_path=f"conventions.{name}")
        for name, value in raw_conventions.items()
    }
    if "config_files" in data and isinstance(data["config_files"], list):
        data["config_files"] = tuple(data["config_files"])

    try:
        config = BuildConfig(**data)
    except ValidationError as e:
        msg = "Configuration failed validation"
        raise ConfigError(msg, file_path=str(config_path), internal_details=str(e)) from e

    logger.info(
        "config_loaded",
        path=str(config_path),
        interval_ms=config.file_list_interval,
        wrapper=config.wrapper.value,
    )
    return config


def _parse_rule(value: Any, *, file_path: str, field_path: str) -> Any:
    """Translate a YAML rule value into raw rule values.

    Strings are path prefixes, {pattern: ...} mappings are regular
    expressions and lists combine either form.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [
            _parse_rule(item, file_path=file_path, field_path=f"{field_path}[{index}]")
            for index, item in enumerate(value)
        ]
    if isinstance(value, dict) and set(value) == {"pattern"}:
        return Pattern.compile(str(value["pattern"]))

    msg = "Rule must be a path prefix, a {pattern: ...} mapping or a list"
    raise ConfigError(msg, file_path=file_path, field_path=field_path)
