"""
Configuration management for the fleet alerting system.

Configuration is assembled from an optional YAML file (config/alerts.yaml)
and environment variables, and validated with Pydantic models. The result
is an immutable AppConfig passed explicitly to every service constructor.

Example:
    >>> from fleet_alerts.config import load_config, AppConfig
    >>> config = load_config()
    >>> if not config.email.enabled:
    ...     print("email alerts disabled")

Modules:
    loader: Configuration file and environment loading
    models: Pydantic models for configuration validation
"""

from fleet_alerts.config.loader import ConfigLoadError, ConfigLoader, load_config, parse_bool
from fleet_alerts.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    # Delivery channels
    EmailConfig,
    ExternalApiConfig,
    WebhookConfig,
    # Evaluation
    SchedulerConfig,
    ThresholdDefaults,
    # Infrastructure
    ApiConfig,
    AuthConfig,
    DatabaseConfig,
    LoggingConfig,
    # Root config
    AppConfig,
)

__all__: list[str] = [
    # Loader
    "load_config",
    "parse_bool",
    "ConfigLoader",
    "ConfigLoadError",
    # Enums
    "LogFormat",
    "LogLevel",
    # Delivery channels
    "EmailConfig",
    "ExternalApiConfig",
    "WebhookConfig",
    # Evaluation
    "SchedulerConfig",
    "ThresholdDefaults",
    # Infrastructure
    "ApiConfig",
    "AuthConfig",
    "DatabaseConfig",
    "LoggingConfig",
    # Root config
    "AppConfig",
]
