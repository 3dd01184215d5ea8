"""Configuration settings using Pydantic for validation."""

from typing import Optional, Any
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import re
import yaml

from ..errors import ConfigurationError


class AWSConfig(BaseModel):
    """AWS connection configuration for the Kinesis client."""
    region: str = Field(default="eu-central-1", description="AWS region")

    # Optional static credentials; the default provider chain is used when absent
    access_key_id: Optional[str] = Field(default=None, description="AWS access key ID")
    secret_access_key: Optional[str] = Field(default=None, description="AWS secret access key")
    session_token: Optional[str] = Field(default=None, description="AWS session token")

    # LocalStack or other Kinesis-compatible endpoint
    endpoint_url: Optional[str] = Field(default=None, description="Kinesis endpoint override")

    total_max_attempts: int = Field(default=1, ge=1, description="Attempts per remote call, 1 disables retries")
    connect_timeout: float = Field(default=10, gt=0, description="Connect timeout in seconds")
    read_timeout: float = Field(default=30, gt=0, description="Read timeout in seconds")

    @field_validator('access_key_id', 'secret_access_key', 'session_token', 'endpoint_url', mode='before')
    @classmethod
    def empty_as_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class KinesisConfig(BaseModel):
    """Stream access worker configuration."""
    default_limit: int = Field(default=100, ge=1, le=10000, description="Page size when a request has no limit")
    max_in_flight: int = Field(default=1, ge=1, description="Concurrent handler calls per address")


class HttpConfig(BaseModel):
    """HTTP gateway configuration."""
    host: str = Field(default="0.0.0.0", description="Listen host")
    port: int = Field(default=8888, description="Listen port")
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Deadline for each bus request")


class HealthConfig(BaseModel):
    """Health check service configuration."""
    enabled: bool = Field(default=True, description="Run the health check server")
    port: int = Field(default=8080, description="Health check server port")
    host: str = Field(default="0.0.0.0", description="Health check server host")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Log format must be 'json' or 'text'")
        return v


class KinescopeSettings(BaseSettings):
    """Main Kinescope service settings."""

    service_name: str = Field(default="kinescope", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    aws: AWSConfig = Field(default_factory=AWSConfig)
    kinesis: KinesisConfig = Field(default_factory=KinesisConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v

    model_config = SettingsConfigDict(
        env_prefix="KINESCOPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ConfigurationError: If a required environment variable is not set
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ConfigurationError(f"environment variable {var_name} is required, but was not found")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> KinescopeSettings:
    """
    Load settings from a YAML config file and environment variables.

    The config file supports ``${VAR}`` and ``${VAR:-default}`` substitution.
    Without a config file, settings come from ``KINESCOPE_*`` environment
    variables (nested with ``__``) and defaults.

    Raises:
        ConfigurationError: If a required environment variable is missing
        FileNotFoundError: If the config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return KinescopeSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return KinescopeSettings()
