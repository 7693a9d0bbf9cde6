"""Server-side identity, session and linking settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

from anonlink.domain.model.enums import RetentionPolicy

from .env import env_float, env_int, optional_env_var
from .errors import ConfigurationError

DEFAULT_SESSION_TTL: Final[timedelta] = timedelta(days=30)
DEFAULT_SESSION_UPDATE_AGE: Final[timedelta] = timedelta(days=1)
DEFAULT_LEASE_TTL: Final[timedelta] = timedelta(seconds=30)
DEFAULT_MAGIC_LINK_TTL: Final[timedelta] = timedelta(minutes=5)


@dataclass(frozen=True, slots=True)
class StoreRetryConfig:
    max_attempts: int = 4
    backoff_factor: float = 0.05
    max_backoff_seconds: float = 1.0


@dataclass(frozen=True, slots=True)
class SessionConfig:
    ttl: timedelta = DEFAULT_SESSION_TTL
    update_age: timedelta = DEFAULT_SESSION_UPDATE_AGE


@dataclass(frozen=True, slots=True)
class LinkingConfig:
    lease_ttl: timedelta = DEFAULT_LEASE_TTL
    retention: RetentionPolicy = RetentionPolicy.DELETE


@dataclass(frozen=True, slots=True)
class AuthConfig:
    sessions: SessionConfig = field(default_factory=SessionConfig)
    linking: LinkingConfig = field(default_factory=LinkingConfig)
    store_retry: StoreRetryConfig = field(default_factory=StoreRetryConfig)
    magic_link_ttl: timedelta = DEFAULT_MAGIC_LINK_TTL


def _retention_from_env() -> RetentionPolicy:
    raw = optional_env_var("ANONLINK_ANONYMOUS_RETENTION")
    if raw is None:
        return RetentionPolicy.DELETE
    try:
        return RetentionPolicy(raw.lower())
    except ValueError as exc:
        allowed = ", ".join(policy.value for policy in RetentionPolicy)
        raise ConfigurationError(
            f"ANONLINK_ANONYMOUS_RETENTION must be one of {allowed}, got {raw!r}"
        ) from exc


def get_auth_config() -> AuthConfig:
    sessions = SessionConfig(
        ttl=timedelta(
            seconds=env_float(
                "ANONLINK_SESSION_TTL_SECONDS",
                DEFAULT_SESSION_TTL.total_seconds(),
                minimum=1.0,
            )
        ),
        update_age=timedelta(
            seconds=env_float(
                "ANONLINK_SESSION_UPDATE_AGE_SECONDS",
                DEFAULT_SESSION_UPDATE_AGE.total_seconds(),
            )
        ),
    )
    linking = LinkingConfig(
        lease_ttl=timedelta(
            seconds=env_float(
                "ANONLINK_LEASE_TTL_SECONDS",
                DEFAULT_LEASE_TTL.total_seconds(),
                minimum=1.0,
            )
        ),
        retention=_retention_from_env(),
    )
    store_retry = StoreRetryConfig(
        max_attempts=env_int("ANONLINK_STORE_RETRY_ATTEMPTS", 4, minimum=1),
    )
    magic_link_ttl = timedelta(
        seconds=env_float(
            "ANONLINK_MAGIC_LINK_TTL_SECONDS",
            DEFAULT_MAGIC_LINK_TTL.total_seconds(),
            minimum=1.0,
        )
    )
    return AuthConfig(
        sessions=sessions,
        linking=linking,
        store_retry=store_retry,
        magic_link_ttl=magic_link_ttl,
    )
