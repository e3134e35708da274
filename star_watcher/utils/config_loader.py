"""Configuration loader for star-watcher."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from star_watcher.models.config import AppConfig

log = structlog.stdlib.get_logger()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables."""

    def __init__(self) -> None:
        self.env_var_pattern = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from a YAML file with environment variable overrides.

        Without a path, settings come from ``STAR_WATCHER_*`` environment
        variables and the model defaults.

        Args:
            config_path: Path to the configuration YAML file

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        config_dict: Dict[str, Any] = {}
        if config_path is not None:
            log.info("loading_configuration", config_path=config_path)
            config_dict = self._substitute_env_vars(self._load_yaml_file(config_path))

        try:
            app_config = AppConfig(**config_dict)
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        for warning in self.validate_config(app_config):
            log.warning("configuration_warning", warning=warning)
        log.debug("configuration_loaded", config_path=config_path)
        return app_config

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        path = Path(config_path).expanduser()
        try:
            with open(path, "r") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file {config_path}: {e}") from e

        if config_dict is None:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute ``${VAR}`` and ``${VAR:-default}`` references."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_in_string(config)
        else:
            return config

    def _substitute_env_var_in_string(self, value: str) -> Any:
        def replace(match: re.Match) -> str:
            var_name, default = match.group(1), match.group(2)
            env_value = os.getenv(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            raise ConfigurationError(
                f"Required environment variable not set: {var_name}. "
                f"Please set {var_name} in your environment."
            )

        substituted = self.env_var_pattern.sub(replace, value)
        # "${GITHUB_TOKEN:-}" with nothing set means "no value"
        if substituted == "" and self.env_var_pattern.search(value):
            return None
        return substituted

    def validate_config(self, config: AppConfig) -> list[str]:
        """Return warnings for settings that are valid but probably unintended."""
        warnings = []

        if config.retry.initial_delay > config.retry.max_delay:
            warnings.append(
                f"retry.initial_delay ({config.retry.initial_delay}) exceeds "
                f"retry.max_delay ({config.retry.max_delay}); every delay will be capped"
            )

        if config.incremental.enabled and config.incremental.full_sync_interval_hours == 0:
            warnings.append(
                "incremental.full_sync_interval_hours is 0; every check will be a full fetch"
            )

        if config.incremental.restar_threshold_seconds <= config.incremental.timestamp_tolerance_seconds:
            warnings.append(
                "incremental.restar_threshold_seconds should be larger than "
                "incremental.timestamp_tolerance_seconds"
            )

        return warnings
