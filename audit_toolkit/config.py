"""
Configuration module for Audit Toolkit.

Provides centralized configuration for storage connections, soft delete
behavior, exception translation and logging.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, get_args, get_origin

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ToolkitConfig(BaseModel):
    """Central configuration for Audit Toolkit.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (AUDIT_ prefix)
        3. Configuration files (JSON or YAML)
        4. Default values (lowest priority)

    Example:
        >>> config = ToolkitConfig(
        ...     database_url="postgresql://app@db/records",
        ...     database_retry_cap=10,
        ... )

        Loading from environment:

        >>> os.environ['AUDIT_DATABASE_RETRY_CAP'] = '10'
        >>> config = ToolkitConfig.from_env()

        Loading from file:

        >>> config = ToolkitConfig.from_file('production.yaml')

    Security Considerations:
        Connection strings usually embed credentials and should come from the
        environment rather than from files under version control.
    """

    # General settings
    application_name: str = Field(
        "Audit Toolkit", description="Name of the application using the toolkit"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production, test)"
    )
    log_level: str = Field("INFO", description="Root log level")

    # Database connection settings
    database_url: str = Field(
        "sqlite:///./audit_toolkit.db", description="SQLAlchemy database URL"
    )
    database_retry_cap: int = Field(
        5, description="Connection attempts before giving up", gt=0, le=100
    )
    database_retry_delay_seconds: float = Field(
        5.0, description="Pause between connection attempts", ge=0
    )
    database_pool_size: int = Field(10, description="Connection pool size", gt=0)
    database_max_overflow: int = Field(
        20, description="Connections allowed beyond the pool size", ge=0
    )

    # Cache connection settings
    cache_url: str = Field("redis://localhost:6379/0", description="Redis URL")
    cache_retry_cap: int = Field(
        5, description="Connection attempts before giving up", gt=0, le=100
    )
    cache_retry_delay_seconds: float = Field(
        5.0, description="Pause between connection attempts", ge=0
    )
    cache_connect_timeout_seconds: float = Field(
        2.0, description="Socket connect timeout", gt=0
    )

    # Message broker settings
    broker_bootstrap_servers: List[str] = Field(
        default_factory=lambda: ["localhost:9092"],
        description="Kafka bootstrap servers as host:port",
    )
    broker_client_id: str = Field("audit-toolkit", description="Kafka client id")
    broker_group_id: str = Field("audit-toolkit", description="Kafka consumer group")
    broker_retry_cap: int = Field(
        5, description="Connection attempts before giving up", gt=0, le=100
    )
    broker_retry_delay_seconds: float = Field(
        5.0, description="Pause between connection attempts", ge=0
    )

    # Exception translation
    supported_languages: List[str] = Field(
        default_factory=lambda: ["en"],
        description="Languages with a message catalog",
    )
    default_language: str = Field(
        "en", description="Catalog used when a request's language is unsupported"
    )

    # Soft delete settings
    allow_hard_delete: bool = Field(
        True, description="Allow the purge operations to physically remove rows"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Log level must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return v.upper()

    @field_validator("supported_languages")
    @classmethod
    def normalize_languages(cls, v: List[str]) -> List[str]:
        languages = [language.strip().lower() for language in v if language.strip()]
        if not languages:
            raise ValueError("At least one supported language is required")
        return languages

    @field_validator("default_language")
    @classmethod
    def validate_default_language(cls, v: str, info: ValidationInfo) -> str:
        """Ensure the default language has a catalog."""
        language = v.strip().lower()
        supported = info.data.get("supported_languages") or []
        if supported and language not in supported:
            raise ValueError(
                f"Default language '{language}' is not in supported languages"
            )
        return language

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    @classmethod
    def from_env(cls, prefix: str = "AUDIT_") -> "ToolkitConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            if field_type is bool:
                config_dict[field_name] = value.lower() in ("true", "1", "yes", "on")
            elif get_origin(field_type) is list:
                config_dict[field_name] = [item.strip() for item in value.split(",")]
            else:
                # pydantic coerces numeric strings
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ToolkitConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: File path; ``.yaml``/``.yml`` files are parsed as YAML

        Returns:
            Configuration instance
        """
        file_path = Path(path)
        with open(file_path, "r", encoding="utf-8") as fh:
            if file_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(fh) or {}
            else:
                data = json.load(fh)
        return cls.model_validate(data)

    def get_database_config(self) -> Dict[str, Any]:
        """Get database connection configuration."""
        return {
            "url": self.database_url,
            "retry_cap": self.database_retry_cap,
            "retry_delay_seconds": self.database_retry_delay_seconds,
            "pool_size": self.database_pool_size,
            "max_overflow": self.database_max_overflow,
        }

    def get_cache_config(self) -> Dict[str, Any]:
        """Get cache connection configuration."""
        return {
            "url": self.cache_url,
            "retry_cap": self.cache_retry_cap,
            "retry_delay_seconds": self.cache_retry_delay_seconds,
            "connect_timeout_seconds": self.cache_connect_timeout_seconds,
        }

    def get_broker_config(self) -> Dict[str, Any]:
        """Get message broker connection configuration."""
        return {
            "bootstrap_servers": list(self.broker_bootstrap_servers),
            "client_id": self.broker_client_id,
            "group_id": self.broker_group_id,
            "retry_cap": self.broker_retry_cap,
            "retry_delay_seconds": self.broker_retry_delay_seconds,
        }


# Global configuration instance
_config: Optional[ToolkitConfig] = None


def get_config() -> ToolkitConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = ToolkitConfig.from_env()

    return _config


def set_config(config: Optional[ToolkitConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> ToolkitConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = ToolkitConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = ToolkitConfig(**config_dict)

    return _config
