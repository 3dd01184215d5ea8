"""Service configuration."""

from .settings import (
    AWSConfig,
    HealthConfig,
    HttpConfig,
    KinescopeSettings,
    KinesisConfig,
    LoggingConfig,
    load_settings,
)

__all__ = [
    "AWSConfig",
    "HealthConfig",
    "HttpConfig",
    "KinescopeSettings",
    "KinesisConfig",
    "LoggingConfig",
    "load_settings",
]
