"""
Configuration loader for nr_guardian.

Configuration is merged from a config file, environment variables and explicit
overrides, in that order of increasing precedence.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigError
from .models import GuardianConfig


class ConfigLoader:
    """Configuration loader with support for multiple sources."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """
        Initialize configuration loader.

        Args:
            environ: Environment mapping, defaults to ``os.environ``
        """
        self.environ = environ if environ is not None else os.environ
        self.config_paths = [
            Path("nr_guardian.yaml"),
            Path("nr_guardian.yml"),
            Path("nr_guardian.json"),
            Path.home() / ".nr_guardian" / "config.yaml",
            Path.home() / ".nr_guardian" / "config.yml",
            Path.home() / ".nr_guardian" / "config.json",
        ]

        self.env_prefix = "NR_GUARDIAN_"

    def load_config(
        self,
        config_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> GuardianConfig:
        """
        Load configuration from all available sources.

        Args:
            config_file: Specific config file to load
            overrides: Values that win over file and environment, ``None``
                values are ignored

        Returns:
            GuardianConfig instance with merged configuration

        Raises:
            ConfigError: If a source cannot be parsed or the result is invalid
        """
        config_data: Dict[str, Any] = {}

        file_config = self._load_from_file(config_file)
        if file_config:
            config_data.update(file_config)

        env_config = self._load_from_environment()
        if env_config:
            config_data = self._deep_merge(config_data, env_config)

        if overrides:
            config_data = self._deep_merge(
                config_data, {k: v for k, v in overrides.items() if v is not None}
            )

        try:
            return GuardianConfig(**config_data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def _load_from_file(
        self, config_file: Optional[Union[str, Path]] = None
    ) -> Optional[Dict[str, Any]]:
        """Load configuration from file."""
        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
            return self._parse_config_file(config_path)

        for config_path in self.config_paths:
            if config_path.exists():
                return self._parse_config_file(config_path)

        return None

    def _parse_config_file(self, config_path: Path) -> Dict[str, Any]:
        """Parse configuration file based on extension."""
        suffix = config_path.suffix.lower()
        if suffix not in (".yaml", ".yml", ".json"):
            raise ConfigError(f"Unsupported config file format: {config_path.suffix}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                if suffix == ".json":
                    return json.load(f) or {}
                return yaml.safe_load(f) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        # Raw strings: keys and ids must not go through numeric conversion
        raw_mappings = {
            "NEW_RELIC_API_KEY": ("api_key",),
            "NEW_RELIC_ACCOUNT_ID": ("account_id",),
            "NEW_RELIC_REGION": ("region",),
        }

        env_mappings = {
            f"{self.env_prefix}LOG_LEVEL": ("logging", "level"),
            f"{self.env_prefix}LOG_FORMAT": ("logging", "format"),
            f"{self.env_prefix}LOG_STRUCTURED": ("logging", "enable_structured"),
            f"{self.env_prefix}CACHE_TTL": ("cache", "ttl"),
            f"{self.env_prefix}ENABLE_CACHE": ("cache", "enabled"),
            f"{self.env_prefix}RATE_LIMIT_MAX": ("rate_limit", "max_requests"),
            f"{self.env_prefix}RATE_LIMIT_INTERVAL": ("rate_limit", "interval"),
            f"{self.env_prefix}MAX_RETRIES": ("retry", "max_retries"),
            f"{self.env_prefix}TIMEOUT": ("timeout",),
            f"{self.env_prefix}OUTPUT_JSON": ("output_json",),
            f"{self.env_prefix}API_HOST": ("api", "host"),
            f"{self.env_prefix}API_PORT": ("api", "port"),
            f"{self.env_prefix}ENV": ("api", "environment"),
        }

        for env_var, config_path in raw_mappings.items():
            value = self.environ.get(env_var)
            if value:
                self._set_nested(config, config_path, value.strip())

        for env_var, config_path in env_mappings.items():
            value = self.environ.get(env_var)
            if value is not None:
                self._set_nested(config, config_path, self._convert_env_value(value))

        return config

    @staticmethod
    def _set_nested(config: Dict[str, Any], path: tuple, value: Any) -> None:
        current = config
        for key in path[:-1]:
            current = current.setdefault(key, {})
        current[path[-1]] = value

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type."""
        lower = value.lower()
        if lower in ("true", "yes", "on"):
            return True
        if lower in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(
        self, base: Dict[str, Any], override: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_config(
    config_file: Optional[Union[str, Path]] = None, **overrides: Any
) -> GuardianConfig:
    """Convenience wrapper around ConfigLoader.load_config."""
    return ConfigLoader().load_config(config_file, overrides or None)
