"""Application wiring: builds services from configuration and the default adapters."""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from anonlink.adapters.credentials import LoggingMagicLinkSender, ScryptCredentialHasher
from anonlink.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyIdentityUnitOfWork,
    is_started,
    startup,
)
from anonlink.config import get_auth_config, get_client_config
from anonlink.domain.auth_flow import AuthFlowOrchestrator
from anonlink.domain.linking import LinkingCoordinator
from anonlink.domain.ports.unit_of_work import IdentityUnitOfWork
from anonlink.domain.retry import RetryPolicy

if TYPE_CHECKING:
    import httpx
    from fastapi import FastAPI

    from anonlink.client import SessionSynchronizer
    from anonlink.config import AuthConfig, ClientConfig, StoreRetryConfig
    from anonlink.domain.auth_flow import AuthResult
    from anonlink.domain.ports.credentials import CredentialHasher, MagicLinkSender
    from anonlink.domain.ports.migration import ResourceMigrator

UnitOfWorkFactory = Callable[[], IdentityUnitOfWork]

log = getLogger(__name__)


def _default_unit_of_work_factory() -> UnitOfWorkFactory:
    if not is_started():
        startup()
    return SqlAlchemyIdentityUnitOfWork


def _retry_policy(config: StoreRetryConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.max_attempts,
        backoff_factor=config.backoff_factor,
        max_backoff=config.max_backoff_seconds,
    )


def build_coordinator(
    *,
    config: AuthConfig | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    resource_migrator: ResourceMigrator | None = None,
) -> LinkingCoordinator:
    effective_config = config or get_auth_config()
    return LinkingCoordinator(
        unit_of_work_factory=unit_of_work_factory or _default_unit_of_work_factory(),
        resource_migrator=resource_migrator,
        lease_ttl=effective_config.linking.lease_ttl,
        session_ttl=effective_config.sessions.ttl,
        retention=effective_config.linking.retention,
        retry_policy=_retry_policy(effective_config.store_retry),
    )


def build_orchestrator(
    *,
    config: AuthConfig | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    hasher: CredentialHasher | None = None,
    magic_link_sender: MagicLinkSender | None = None,
    resource_migrator: ResourceMigrator | None = None,
) -> AuthFlowOrchestrator:
    """Assemble the orchestrator; defaults to the SQLAlchemy store and scrypt hashing."""

    effective_config = config or get_auth_config()
    effective_uow = unit_of_work_factory or _default_unit_of_work_factory()
    coordinator = build_coordinator(
        config=effective_config,
        unit_of_work_factory=effective_uow,
        resource_migrator=resource_migrator,
    )
    log.info(
        "Auth flows ready: retention=%s, lease_ttl=%s, session_ttl=%s",
        effective_config.linking.retention,
        effective_config.linking.lease_ttl,
        effective_config.sessions.ttl,
    )
    return AuthFlowOrchestrator(
        unit_of_work_factory=effective_uow,
        coordinator=coordinator,
        hasher=hasher or ScryptCredentialHasher(),
        magic_link_sender=magic_link_sender or LoggingMagicLinkSender(),
        session_ttl=effective_config.sessions.ttl,
        session_update_age=effective_config.sessions.update_age,
        magic_link_ttl=effective_config.magic_link_ttl,
        retry_policy=_retry_policy(effective_config.store_retry),
    )


def create_web_app(orchestrator: AuthFlowOrchestrator | None = None) -> FastAPI:
    from anonlink.ui.web import create_app  # noqa: PLC0415

    return create_app(orchestrator or build_orchestrator())


def reclaim_expired_leases(*, unit_of_work_factory: UnitOfWorkFactory | None = None) -> int:
    coordinator = build_coordinator(unit_of_work_factory=unit_of_work_factory)
    reclaimed = coordinator.reclaim_expired_leases()
    log.info("Reclaimed %s expired link leases", reclaimed)
    return reclaimed


def create_anonymous_identity(
    *,
    display_name: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> AuthResult:
    orchestrator = build_orchestrator(unit_of_work_factory=unit_of_work_factory)
    return orchestrator.create_anonymous(display_name=display_name)


def show_session(token: str, *, unit_of_work_factory: UnitOfWorkFactory | None = None) -> AuthResult:
    orchestrator = build_orchestrator(unit_of_work_factory=unit_of_work_factory)
    return orchestrator.get_session(token)


def build_session_synchronizer(
    *,
    config: ClientConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SessionSynchronizer:
    """Client-side entry point: a synchronizer talking to the configured API URL."""

    from anonlink.adapters.auth_api import HttpAuthApi  # noqa: PLC0415
    from anonlink.client import SessionSynchronizer  # noqa: PLC0415

    effective_config = config or get_client_config()
    api = HttpAuthApi(effective_config.resilience, transport=transport)
    return SessionSynchronizer(
        api,
        poll_interval=effective_config.poll_interval_seconds,
        link_timeout=effective_config.link_timeout_seconds,
    )
