"""Configuration loader for the Thymer inbox sync server."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from thymer_inbox.exceptions import ThymerInboxError
from thymer_inbox.models.config import DEFAULT_TOKEN, AppConfig

log = structlog.stdlib.get_logger()

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class ConfigurationError(ThymerInboxError):
    """Raised when configuration is invalid or missing."""


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables.

    YAML values may reference the environment as ``${VAR}``. Environment
    variables with the ``THYMER_`` prefix fill in any setting the file leaves
    out; values written in the file take precedence.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self.env_var_pattern = re.compile(r"\$\{([^}]+)\}")
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from a YAML file with environment variable overrides.

        Args:
            config_path: Path to the configuration YAML file. If None, picks
                ``config/{APP_ENV}.yaml`` and falls back to ``config/default.yaml``.

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        if config_path is None:
            config_path = self._get_default_config_path()

        log.info("loading_configuration", config_path=config_path)

        config_dict = self._load_yaml_file(config_path)
        config_dict = self._substitute_env_vars(config_dict)

        try:
            app_config = AppConfig(**config_dict)
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        log.info(
            "configuration_loaded_successfully",
            github_enabled=app_config.github.enabled,
            calendar_enabled=app_config.calendar.enabled,
            readwise_enabled=app_config.readwise.enabled,
        )
        return app_config

    def _get_default_config_path(self) -> str:
        """Get the configuration file path for the current ``APP_ENV``."""
        env = os.getenv("APP_ENV", "default")
        config_file = self.config_dir / f"{env}.yaml"

        if not config_file.exists():
            config_file = self.config_dir / "default.yaml"

        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}. "
                f"Please create config/default.yaml or set APP_ENV to a valid environment."
            )

        return str(config_file)

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        """Load a YAML configuration file.

        An empty file is valid and yields an all-defaults configuration.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        try:
            with open(config_path, "r") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(
                f"Failed to load configuration file {config_path}: {e}"
            ) from e

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping at the top level: {config_path}"
            )

        log.debug("yaml_file_loaded", config_path=config_path)
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute ``${VAR_NAME}`` references in configuration values."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_in_string(config)
        else:
            return config

    def _substitute_env_var_in_string(self, value: str) -> str:
        """Substitute environment variables in a string.

        Raises:
            ConfigurationError: If a referenced environment variable is not set
        """
        for var_name in self.env_var_pattern.findall(value):
            env_value = os.getenv(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Required environment variable not set: {var_name}. "
                    f"Please set {var_name} in your environment or .env file."
                )
            value = value.replace(f"${{{var_name}}}", env_value)

        return value

    def validate_config(self, config: AppConfig) -> list[str]:
        """Return warnings for settings that are valid but probably unintended."""
        warnings = []

        if config.server.token == DEFAULT_TOKEN:
            warnings.append(
                "server.token is the default development token; set THYMER_SERVER__TOKEN"
            )

        if not (config.github.enabled or config.calendar.enabled or config.readwise.enabled):
            warnings.append("no sync source is configured; only POST /queue will feed the inbox")

        if config.github.repos and not config.github.token:
            warnings.append("github.repos is set but github.token is missing")

        if config.calendar.calendars and not config.calendar.token_file.exists():
            warnings.append(
                f"calendar.token_file {config.calendar.token_file} does not exist; "
                f"calendar sync is disabled"
            )

        if config.server.stream_poll_interval >= config.server.stream_window:
            warnings.append(
                f"server.stream_poll_interval ({config.server.stream_poll_interval}) should be "
                f"less than server.stream_window ({config.server.stream_window})"
            )

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)

        return warnings
