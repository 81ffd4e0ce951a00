"""
Configuration loader for YAML and environment based configuration.

Settings are read from an optional YAML file and then overridden by
environment variables. The merged result is validated into an immutable
AppConfig.

YAML file (optional, default config/alerts.yaml):
    email, external_api, webhook, thresholds, scheduler, database,
    auth, api, logging sections, each matching its AppConfig model.

Environment variables override:
    - EMAIL_ALERTS_ENABLED, SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD
    - NOTIFICATION_EMAIL: Legacy single fallback recipient
    - EXTERNAL_API_URL, EXTERNAL_API_KEY
    - WEBHOOK_SECRET
    - RUN_ALERTS_ON_START, ALERTS_TIMEZONE
    - DATABASE_URL, JWT_SECRET
    - LOG_LEVEL, LOG_FORMAT, API_HOST, API_PORT

Example:
    >>> from fleet_alerts.config.loader import load_config
    >>> config = load_config("config/alerts.yaml")
    >>> print(config.scheduler.timezone)
    America/Argentina/Buenos_Aires
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from fleet_alerts.config.models import AppConfig

DEFAULT_CONFIG_PATH = Path("config") / "alerts.yaml"

_TRUE_VALUES = {"true", "1", "yes", "on"}


class ConfigLoadError(Exception):
    """
    Raised when configuration loading fails.

    Attributes:
        message: Error message describing what went wrong.
        file_path: Path to the file that caused the error, if applicable.
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


def parse_bool(value: str) -> bool:
    """
    Parse an environment-style boolean.

    Args:
        value: Raw string value.

    Returns:
        bool: True for true/1/yes/on (case-insensitive), False otherwise.
    """
    return value.strip().lower() in _TRUE_VALUES


def _keep(value: str) -> str:
    return value


# Environment variable -> (config section, field, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "EMAIL_ALERTS_ENABLED": ("email", "enabled", parse_bool),
    "SMTP_HOST": ("email", "smtp_host", _keep),
    "SMTP_PORT": ("email", "smtp_port", _keep),
    "SMTP_USER": ("email", "smtp_user", _keep),
    "SMTP_PASSWORD": ("email", "smtp_password", _keep),
    "NOTIFICATION_EMAIL": ("thresholds", "legacy_recipient", _keep),
    "EXTERNAL_API_URL": ("external_api", "url", _keep),
    "EXTERNAL_API_KEY": ("external_api", "api_key", _keep),
    "WEBHOOK_SECRET": ("webhook", "secret", _keep),
    "RUN_ALERTS_ON_START": ("scheduler", "run_on_start", parse_bool),
    "ALERTS_TIMEZONE": ("scheduler", "timezone", _keep),
    "DATABASE_URL": ("database", "url", _keep),
    "JWT_SECRET": ("auth", "jwt_secret", _keep),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
    "API_HOST": ("api", "host", _keep),
    "API_PORT": ("api", "port", _keep),
}


class ConfigLoader:
    """
    Loads and validates application configuration.

    The YAML file is optional: a missing file yields the model defaults,
    while an unreadable or malformed file is an error.

    Example:
        >>> loader = ConfigLoader("config/alerts.yaml", environ={"SMTP_HOST": "smtp.example.com"})
        >>> config = loader.load()
        >>> config.email.smtp_host
        'smtp.example.com'
    """

    def __init__(
        self,
        config_path: Path | str | None = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize config loader.

        Args:
            config_path: Path to the YAML file. Defaults to CONFIG_PATH or
                config/alerts.yaml.
            environ: Environment mapping (defaults to os.environ).
        """
        self.environ: Mapping[str, str] = os.environ if environ is None else environ
        if config_path is None:
            config_path = self.environ.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH
        self.config_path = Path(config_path)

    def _load_yaml(self) -> Dict[str, Any]:
        """
        Load the YAML file if it exists.

        Returns:
            Dict containing parsed YAML content (empty if file is absent).

        Raises:
            ConfigLoadError: If the file cannot be read or parsed.
        """
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(
                f"Invalid YAML syntax in {self.config_path}: {e}",
                file_path=self.config_path,
                cause=e,
            ) from e
        except OSError as e:
            raise ConfigLoadError(
                f"Error reading {self.config_path}: {e}",
                file_path=self.config_path,
                cause=e,
            ) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Configuration file must contain a mapping: {self.config_path}",
                file_path=self.config_path,
            )
        return data

    def _env(self, name: str) -> Optional[str]:
        """Return a non-blank environment value or None."""
        value = self.environ.get(name)
        if value is None or not value.strip():
            return None
        return value.strip()

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge environment overrides into the raw configuration mapping.

        Args:
            data: Raw configuration sections from YAML.

        Returns:
            Dict[str, Any]: New mapping with overrides applied.
        """
        merged: Dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                value = {}
            if not isinstance(value, dict):
                raise ConfigLoadError(
                    f"Section '{key}' must be a mapping in {self.config_path}",
                    file_path=self.config_path,
                )
            merged[key] = dict(value)

        for env_name, (section, field, convert) in ENV_OVERRIDES.items():
            value = self._env(env_name)
            if value is None:
                continue
            merged.setdefault(section, {})[field] = convert(value)

        return merged

    def load(self) -> AppConfig:
        """
        Load and validate the configuration.

        Returns:
            AppConfig: Validated application configuration.

        Raises:
            ConfigLoadError: If the file is invalid or validation fails.
        """
        data = self._apply_env_overrides(self._load_yaml())

        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigLoadError(
                f"Configuration validation failed: {e}",
                file_path=self.config_path,
                cause=e,
            ) from e


def load_config(
    config_path: Path | str | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """
    Convenience function to load application configuration.

    Args:
        config_path: Optional YAML file path.
        environ: Optional environment mapping (defaults to os.environ).

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigLoadError: If configuration loading fails.

    Example:
        >>> from fleet_alerts.config import load_config
        >>> config = load_config()
        >>> config.external_api.is_configured
        False
    """
    loader = ConfigLoader(config_path, environ=environ)
    return loader.load()
