"""Application configuration helpers."""

from __future__ import annotations

from .auth import (
    AuthConfig,
    LinkingConfig,
    RetentionPolicy,
    SessionConfig,
    StoreRetryConfig,
    get_auth_config,
)
from .client import ClientConfig, get_client_config
from .env import require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import HttpRetryPolicy, RateLimit, ResilienceConfig
from .logging import configure_logging
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "AuthConfig",
    "ClientConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "HttpRetryPolicy",
    "LinkingConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetentionPolicy",
    "SessionConfig",
    "StorageConfig",
    "StoreRetryConfig",
    "configure_logging",
    "get_auth_config",
    "get_client_config",
    "get_database_config",
    "get_storage_config",
    "require_env_var",
    "require_env_vars",
]
