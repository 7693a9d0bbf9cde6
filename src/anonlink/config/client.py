"""Client-side API and synchronisation settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from .env import env_float, optional_env_var
from .http_resilience import HttpRetryPolicy, RateLimit, ResilienceConfig

DEFAULT_API_URL: Final[str] = "http://localhost:3000"
DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 300.0
DEFAULT_LINK_TIMEOUT_SECONDS: Final[float] = 15.0
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 10.0


def _default_resilience() -> ResilienceConfig:
    return ResilienceConfig(name="anonlink-api", base_url=DEFAULT_API_URL)


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Holds settings for one running client (app instance or browser tab)."""

    resilience: ResilienceConfig = field(default_factory=_default_resilience)
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    link_timeout_seconds: float = DEFAULT_LINK_TIMEOUT_SECONDS


def get_client_config() -> ClientConfig:
    base_url = optional_env_var("ANONLINK_API_URL") or DEFAULT_API_URL
    resilience = ResilienceConfig(
        name="anonlink-api",
        base_url=base_url,
        timeout_seconds=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry=HttpRetryPolicy(),
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
    )
    return ClientConfig(
        resilience=resilience,
        poll_interval_seconds=env_float(
            "ANONLINK_POLL_INTERVAL_SECONDS",
            DEFAULT_POLL_INTERVAL_SECONDS,
            minimum=0.001,
        ),
        link_timeout_seconds=env_float(
            "ANONLINK_LINK_TIMEOUT_SECONDS",
            DEFAULT_LINK_TIMEOUT_SECONDS,
            minimum=0.001,
        ),
    )
