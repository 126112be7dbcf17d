"""
Configuration management for the valuation engine.
"""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .config_schema import EngineConfig, validate_config_dict

_ENV_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*))?\}$")


def _resolve_env(value: Any) -> Any:
    """Replace `${VAR}` / `${VAR:-default}` string leaves with environment values."""
    if isinstance(value, dict):
        return {key: _resolve_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_env(item) for item in value]
    if isinstance(value, str):
        match = _ENV_PATTERN.match(value.strip())
        if match:
            name, default = match.groups()
            resolved = os.getenv(name, default)
            if resolved is None:
                return None
            try:
                return yaml.safe_load(resolved)
            except yaml.YAMLError:
                return resolved
    return value


class ConfigManager:
    """Manages engine configuration from YAML files and environment variables."""

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        config_dict: Optional[dict[str, Any]] = None,
        validate: bool = True,
    ):
        """Initialize the configuration manager.

        Args:
            config_path: Path to the YAML configuration file. If None and no
                config_dict is given, the bundled default is used.
            config_dict: In-memory configuration, takes precedence over files.
            validate: Whether to validate configuration against the schema.
        """
        self.config_path = Path(config_path) if config_path else self._get_default_config_path()
        self._config: dict[str, Any] = {}
        self._validated_config: Optional[EngineConfig] = None

        if config_dict is not None:
            self._config = _resolve_env(dict(config_dict))
        else:
            self._load_config()

        if validate:
            self._validate_config()

    def _get_default_config_path(self) -> Path:
        """Get the default configuration file path."""
        return Path(__file__).parent.parent.parent.parent / "config" / "valuation.yaml"

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, encoding="utf-8") as file:
                raw = yaml.safe_load(file) or {}
        except FileNotFoundError as e:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}") from e
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML configuration: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(
                f"Configuration root must be a mapping in {self.config_path}, got {type(raw).__name__}"
            )
        self._config = _resolve_env(raw)

    def _validate_config(self) -> None:
        """Validate configuration against schema."""
        try:
            self._validated_config = validate_config_dict(self._config)
        except ValueError as e:
            raise ValueError(f"Configuration validation failed in {self.config_path}:\n{e}") from e

    @property
    def engine_config(self) -> EngineConfig:
        """Validated configuration (validated lazily when the manager skipped it)."""
        if self._validated_config is None:
            self._validate_config()
        return self._validated_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key with dotted path support.

        Examples:
            >>> config.get('reconciliation.materiality_eur')
            >>> config.get('nonexistent.key', 'default')
        """
        value: Any = self._config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def get_section(self, section: str) -> dict[str, Any]:
        """Get an entire configuration section."""
        value = self.get(section, {})
        return value if isinstance(value, dict) else {}

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value with dotted path support.

        The validated view is dropped and rebuilt on next access.
        """
        parts = key.split(".")
        config = self._config
        for part in parts[:-1]:
            if not isinstance(config.get(part), dict):
                config[part] = {}
            config = config[part]
        config[parts[-1]] = value
        self._validated_config = None

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def to_dict(self) -> dict[str, Any]:
        """Return a copy of the raw configuration."""
        return dict(self._config)

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
        self._validate_config()
