from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from anonlink.domain.credentials import CredentialInput
from anonlink.domain.errors import (
    CredentialConflictError,
    IdentityNotFoundError,
    LinkRequestNotFoundError,
    MigrationFailureError,
    NotAnonymousError,
    ValidationError,
)
from anonlink.domain.model import (
    Credential,
    CredentialKind,
    Identity,
    IdentityKind,
    LinkState,
    RetentionPolicy,
    Session,
)
from tests.helpers.fakes import (
    ExplodingMigrator,
    FakeClock,
    Services,
    build_services,
    resource_ids,
    seed_resources,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from anonlink.adapters.sqlalchemy.unit_of_work import SqlAlchemyIdentityUnitOfWork


def _password(email: str = "ada@example.com") -> Credential:
    return Credential(kind=CredentialKind.PASSWORD, email=email, secret_hash="fake$secret-pass")


def _input(email: str) -> CredentialInput:
    return CredentialInput(email=email, password="secret-pass")


def _identity(services: Services, identity_id: uuid.UUID) -> Identity:
    with services.uow_factory() as uow:
        identity = uow.repositories.identities.get(identity_id)
    assert identity is not None
    return identity


def _identity_or_none(services: Services, identity_id: uuid.UUID) -> Identity | None:
    with services.uow_factory() as uow:
        return uow.repositories.identities.get(identity_id)


def test_begin_link_opens_pending_request_and_takes_lease(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()

    request = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    assert request.state is LinkState.PENDING
    source = _identity(services, anonymous.identity.id)
    assert source.lease_owner == request.id
    assert source.has_live_lease(services.clock())


def test_begin_link_replays_idempotency_key(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()

    first = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")
    second = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    assert second.id == first.id
    assert second.state is LinkState.PENDING


def test_begin_link_rejects_key_reused_for_other_identity(services: Services) -> None:
    first = services.orchestrator.create_anonymous()
    other = services.orchestrator.create_anonymous()
    services.coordinator.begin_link(first.identity.id, _password(), "key-1")

    with pytest.raises(ValidationError, match="different identity"):
        services.coordinator.begin_link(other.identity.id, _password("bob@example.com"), "key-1")


def test_second_begin_while_lease_is_live_conflicts_without_persisting(
    services: Services,
) -> None:
    anonymous = services.orchestrator.create_anonymous()
    services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    rival = services.coordinator.begin_link(
        anonymous.identity.id, _password("other@example.com"), "key-2"
    )

    assert rival.state is LinkState.CONFLICT
    with pytest.raises(LinkRequestNotFoundError):
        services.coordinator.get_link_request(rival.id)


def test_begin_link_rejects_email_already_bound(services: Services) -> None:
    services.orchestrator.sign_up(_input("ada@example.com"))
    anonymous = services.orchestrator.create_anonymous()

    with pytest.raises(CredentialConflictError) as excinfo:
        services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    assert excinfo.value.anonymous_data_intact is True
    assert _identity(services, anonymous.identity.id).lease_owner is None


def test_begin_link_rejects_unknown_and_permanent_sources(services: Services) -> None:
    permanent = services.orchestrator.sign_up(_input("ada@example.com"))

    with pytest.raises(IdentityNotFoundError):
        services.coordinator.begin_link(uuid.uuid4(), _password("x@example.com"), "key-1")
    with pytest.raises(NotAnonymousError):
        services.coordinator.begin_link(permanent.identity.id, _password("y@example.com"), "key-2")


@pytest.mark.parametrize("key", ["", "   ", "k" * 201])
def test_begin_link_rejects_bad_idempotency_keys(services: Services, key: str) -> None:
    anonymous = services.orchestrator.create_anonymous()

    with pytest.raises(ValidationError):
        services.coordinator.begin_link(anonymous.identity.id, _password(), key)


@pytest.mark.parametrize("retention", [RetentionPolicy.DELETE, RetentionPolicy.ARCHIVE])
def test_commit_link_moves_every_resource_and_session(
    sqlite_unit_of_work: Callable[[], SqlAlchemyIdentityUnitOfWork],
    clock: FakeClock,
    retention: RetentionPolicy,
) -> None:
    services = build_services(sqlite_unit_of_work, clock=clock, retention=retention)
    anonymous = services.orchestrator.create_anonymous()
    source_id = anonymous.identity.id
    seeded = set(seed_resources(services.uow_factory, source_id, 25))
    second_tab = Session.issue(identity_id=source_id, now=clock(), ttl=timedelta(days=30))
    with services.uow_factory() as uow:
        uow.repositories.sessions.add(second_tab)
        uow.commit()

    request = services.coordinator.begin_link(source_id, _password(), "key-1")
    result = services.coordinator.commit_link(request.id)

    assert result.identity.kind is IdentityKind.PERMANENT
    assert result.identity.linked_from == source_id
    assert result.identity.display_name == anonymous.identity.display_name
    assert resource_ids(services.uow_factory, result.identity.id) == seeded
    assert resource_ids(services.uow_factory, source_id) == set()

    stored = services.coordinator.get_link_request(request.id)
    assert stored.state is LinkState.COMMITTED
    assert stored.result_identity_id == result.identity.id

    source = _identity_or_none(services, source_id)
    if retention is RetentionPolicy.DELETE:
        assert source is None
    else:
        assert source is not None
        assert source.is_archived
        assert source.lease_owner is None

    first_tab = services.orchestrator.get_session(anonymous.session.token)
    other_tab = services.orchestrator.get_session(second_tab.token)
    assert first_tab.identity.id == result.identity.id
    assert other_tab.identity.id == result.identity.id
    assert first_tab.session.token != anonymous.session.token
    assert first_tab.session.id != other_tab.session.id


def test_commit_link_is_idempotent(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    seed_resources(services.uow_factory, anonymous.identity.id, 5)
    request = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    first = services.coordinator.commit_link(request.id)
    second = services.coordinator.commit_link(request.id)

    assert second.identity.id == first.identity.id
    assert second.session.id == first.session.id
    assert second.session.token == first.session.token
    assert len(resource_ids(services.uow_factory, first.identity.id)) == 5


def test_failed_migration_rolls_back_everything(
    sqlite_unit_of_work: Callable[[], SqlAlchemyIdentityUnitOfWork],
    clock: FakeClock,
) -> None:
    migrator = ExplodingMigrator()
    services = build_services(sqlite_unit_of_work, clock=clock, resource_migrator=migrator)
    anonymous = services.orchestrator.create_anonymous()
    source_id = anonymous.identity.id
    seeded = set(seed_resources(services.uow_factory, source_id, 10))
    request = services.coordinator.begin_link(source_id, _password(), "key-1")

    with pytest.raises(MigrationFailureError) as excinfo:
        services.coordinator.commit_link(request.id)

    assert excinfo.value.anonymous_data_intact is True
    assert "Your existing data is intact" in excinfo.value.user_message
    assert migrator.calls == 1

    source = _identity(services, source_id)
    assert source is not None
    assert source.is_anonymous
    assert not source.is_archived
    assert source.lease_owner is None
    assert resource_ids(services.uow_factory, source_id) == seeded
    with services.uow_factory() as uow:
        assert uow.repositories.identities.get_by_email("ada@example.com") is None

    stored = services.coordinator.get_link_request(request.id)
    assert stored.state is LinkState.FAILED
    assert stored.failure_reason is not None
    assert "resource store offline" in stored.failure_reason

    still_anonymous = services.orchestrator.get_session(anonymous.session.token)
    assert still_anonymous.identity.id == source_id

    with pytest.raises(MigrationFailureError):
        services.coordinator.commit_link(request.id)


def test_failed_link_can_be_retried_with_a_new_key(
    sqlite_unit_of_work: Callable[[], SqlAlchemyIdentityUnitOfWork],
    clock: FakeClock,
) -> None:
    failing = build_services(
        sqlite_unit_of_work, clock=clock, resource_migrator=ExplodingMigrator()
    )
    anonymous = failing.orchestrator.create_anonymous()
    request = failing.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")
    with pytest.raises(MigrationFailureError):
        failing.coordinator.commit_link(request.id)

    healthy = build_services(sqlite_unit_of_work, clock=clock)
    retry = healthy.coordinator.begin_link(anonymous.identity.id, _password(), "key-2")
    result = healthy.coordinator.commit_link(retry.id)

    assert result.identity.linked_from == anonymous.identity.id


def test_commit_reports_conflict_when_email_taken_after_begin(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    seeded = set(seed_resources(services.uow_factory, anonymous.identity.id, 3))
    request = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")
    services.orchestrator.sign_up(_input("ada@example.com"))

    with pytest.raises(CredentialConflictError):
        services.coordinator.commit_link(request.id)

    stored = services.coordinator.get_link_request(request.id)
    assert stored.state is LinkState.CONFLICT
    source = _identity(services, anonymous.identity.id)
    assert source is not None
    assert source.is_anonymous
    assert source.lease_owner is None
    assert resource_ids(services.uow_factory, anonymous.identity.id) == seeded


def test_expired_lease_is_taken_over_by_next_begin(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    abandoned = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    services.clock.advance(seconds=31)
    successor = services.coordinator.begin_link(
        anonymous.identity.id, _password("new@example.com"), "key-2"
    )

    assert successor.state is LinkState.PENDING
    assert services.coordinator.get_link_request(abandoned.id).state is LinkState.FAILED
    with pytest.raises(MigrationFailureError):
        services.coordinator.commit_link(abandoned.id)

    result = services.coordinator.commit_link(successor.id)
    credential = result.identity.credential
    assert credential is not None
    assert credential.email == "new@example.com"


def test_reclaim_expired_leases(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    request = services.coordinator.begin_link(anonymous.identity.id, _password(), "key-1")

    assert services.coordinator.reclaim_expired_leases() == 0

    services.clock.advance(seconds=31)

    assert services.coordinator.reclaim_expired_leases() == 1
    assert services.coordinator.reclaim_expired_leases() == 0
    stored = services.coordinator.get_link_request(request.id)
    assert stored.state is LinkState.FAILED
    assert stored.failure_reason == "lease expired"
    assert _identity(services, anonymous.identity.id).lease_owner is None


def test_merge_into_existing_identity(services: Services) -> None:
    existing = services.orchestrator.sign_up(_input("ada@example.com"))
    seed_resources(services.uow_factory, existing.identity.id, 2)
    anonymous = services.orchestrator.create_anonymous()
    anonymous_resources = set(seed_resources(services.uow_factory, anonymous.identity.id, 3))
    credential = existing.identity.credential
    assert credential is not None

    request = services.coordinator.begin_link(
        anonymous.identity.id, credential, "key-1", merge_into_id=existing.identity.id
    )
    result = services.coordinator.commit_link(request.id)

    assert result.identity.id == existing.identity.id
    owned = resource_ids(services.uow_factory, existing.identity.id)
    assert anonymous_resources <= owned
    assert len(owned) == 5


def test_commit_unknown_request(services: Services) -> None:
    with pytest.raises(LinkRequestNotFoundError):
        services.coordinator.commit_link(uuid.uuid4())
