from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from anonlink.domain.credentials import CredentialInput
from anonlink.domain.errors import (
    CredentialConflictError,
    InvalidCredentialsError,
    LinkInFlightError,
    LinkRequestNotFoundError,
    SessionExpiredError,
    ValidationError,
)
from anonlink.domain.model import Credential, CredentialKind, IdentityKind, LinkState
from tests.helpers.fakes import Services, resource_ids, seed_resources


def _input(email: str = "ada@example.com", password: str | None = "secret-pass") -> CredentialInput:
    return CredentialInput(email=email, password=password)


def test_create_anonymous_issues_working_session(services: Services) -> None:
    result = services.orchestrator.create_anonymous()

    assert result.identity.kind is IdentityKind.ANONYMOUS
    assert result.identity.display_name == "Curious Tester"
    assert not result.linked

    resolved = services.orchestrator.get_session(result.session.token)
    assert resolved.identity.id == result.identity.id


def test_create_anonymous_accepts_display_name(services: Services) -> None:
    result = services.orchestrator.create_anonymous(display_name="Night Owl")

    assert result.identity.display_name == "Night Owl"


def test_sign_up_without_session_creates_permanent_identity(services: Services) -> None:
    result = services.orchestrator.sign_up(_input("Ada@Example.com"), display_name="Ada")

    assert result.identity.kind is IdentityKind.PERMANENT
    assert result.identity.linked_from is None
    assert result.identity.display_name == "Ada"
    credential = result.identity.credential
    assert credential is not None
    assert credential.email == "ada@example.com"
    assert not result.linked


def test_sign_up_with_anonymous_session_links_implicitly(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    seeded = set(seed_resources(services.uow_factory, anonymous.identity.id, 4))

    result = services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token
    )

    assert result.linked
    assert result.identity.kind is IdentityKind.PERMANENT
    assert result.identity.linked_from == anonymous.identity.id
    assert resource_ids(services.uow_factory, result.identity.id) == seeded
    assert services.orchestrator.get_session(anonymous.session.token).identity.id == (
        result.identity.id
    )


def test_sign_up_retry_with_same_key_replays_result(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    seed_resources(services.uow_factory, anonymous.identity.id, 3)

    first = services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signup-1"
    )
    second = services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signup-1"
    )

    assert second.identity.id == first.identity.id
    assert second.session.token == first.session.token
    assert len(resource_ids(services.uow_factory, first.identity.id)) == 3


def test_used_key_does_not_bypass_password_check(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signup-1"
    )

    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_in(
            _input(password="wrong-password"), idempotency_key="signup-1"
        )
    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_in(
            _input(password="wrong-password"),
            current_session_token=anonymous.session.token,
            idempotency_key="signup-1",
        )
    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_up(
            _input(password="wrong-password"),
            current_session_token=anonymous.session.token,
            idempotency_key="signup-1",
        )


def test_used_key_is_rejected_for_another_caller(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signup-1"
    )
    stranger = services.orchestrator.create_anonymous()

    with pytest.raises(ValidationError):
        services.orchestrator.sign_up(
            _input(), current_session_token=stranger.session.token, idempotency_key="signup-1"
        )
    with pytest.raises(ValidationError):
        services.orchestrator.sign_up(_input(), idempotency_key="signup-1")
    with pytest.raises(ValidationError):
        services.orchestrator.sign_up(
            _input("bob@example.com"),
            current_session_token=anonymous.session.token,
            idempotency_key="signup-1",
        )
    assert services.orchestrator.get_session(stranger.session.token).identity.is_anonymous


def test_sign_in_retry_with_same_key_replays_merge(services: Services) -> None:
    services.orchestrator.sign_up(_input())
    anonymous = services.orchestrator.create_anonymous()

    first = services.orchestrator.sign_in(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signin-1"
    )
    second = services.orchestrator.sign_in(
        _input(), current_session_token=anonymous.session.token, idempotency_key="signin-1"
    )

    assert second.identity.id == first.identity.id
    assert second.session.token == first.session.token


def test_sign_up_with_taken_email_keeps_anonymous_data(services: Services) -> None:
    services.orchestrator.sign_up(_input())
    anonymous = services.orchestrator.create_anonymous()
    seeded = set(seed_resources(services.uow_factory, anonymous.identity.id, 2))

    with pytest.raises(CredentialConflictError) as excinfo:
        services.orchestrator.sign_up(_input(), current_session_token=anonymous.session.token)

    assert excinfo.value.anonymous_data_intact is True
    assert resource_ids(services.uow_factory, anonymous.identity.id) == seeded
    still = services.orchestrator.get_session(anonymous.session.token)
    assert still.identity.is_anonymous


def test_sign_up_duplicate_without_session_conflicts(services: Services) -> None:
    services.orchestrator.sign_up(_input())

    with pytest.raises(CredentialConflictError):
        services.orchestrator.sign_up(_input("ADA@example.com"))


def test_sign_up_while_link_in_flight_reports_conflict(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    pending = services.orchestrator.begin_link(
        anonymous.session.token, anonymous.identity.id, _input("first@example.com"), "key-1"
    )
    assert pending.state is LinkState.PENDING

    with pytest.raises(LinkInFlightError):
        services.orchestrator.sign_up(
            _input("second@example.com"), current_session_token=anonymous.session.token
        )


def test_sign_in_rejects_bad_credentials(services: Services) -> None:
    services.orchestrator.sign_up(_input())

    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_in(_input(password="wrong-password"))
    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_in(_input("nobody@example.com"))
    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.sign_in(_input(password=None))


def test_sign_in_opens_new_session(services: Services) -> None:
    signed_up = services.orchestrator.sign_up(_input())

    signed_in = services.orchestrator.sign_in(_input())

    assert signed_in.identity.id == signed_up.identity.id
    assert signed_in.session.token != signed_up.session.token
    assert not signed_in.linked


def test_sign_in_with_anonymous_session_merges_data(services: Services) -> None:
    existing = services.orchestrator.sign_up(_input())
    anonymous = services.orchestrator.create_anonymous()
    seeded = set(seed_resources(services.uow_factory, anonymous.identity.id, 3))

    result = services.orchestrator.sign_in(
        _input(), current_session_token=anonymous.session.token
    )

    assert result.linked
    assert result.identity.id == existing.identity.id
    assert seeded <= resource_ids(services.uow_factory, existing.identity.id)
    resolved = services.orchestrator.get_session(anonymous.session.token)
    assert resolved.identity.id == existing.identity.id


def test_get_session_slides_expiry_after_update_age(services: Services) -> None:
    result = services.orchestrator.create_anonymous()
    original_expiry = result.session.expires_at

    services.clock.advance(hours=1)
    assert services.orchestrator.get_session(result.session.token).session.expires_at == (
        original_expiry
    )

    now = services.clock.advance(days=2)
    refreshed = services.orchestrator.get_session(result.session.token)
    assert refreshed.session.expires_at == now + timedelta(days=30)
    assert services.orchestrator.get_session(result.session.token).session.expires_at == (
        now + timedelta(days=30)
    )


def test_get_session_rejects_unknown_and_expired_tokens(services: Services) -> None:
    result = services.orchestrator.create_anonymous()

    with pytest.raises(SessionExpiredError):
        services.orchestrator.get_session("not-a-token")

    services.clock.advance(days=31)
    with pytest.raises(SessionExpiredError):
        services.orchestrator.get_session(result.session.token)


def test_sign_out_revokes_session(services: Services) -> None:
    result = services.orchestrator.create_anonymous()

    services.orchestrator.sign_out(result.session.token)
    services.orchestrator.sign_out("unknown-token")

    with pytest.raises(SessionExpiredError):
        services.orchestrator.get_session(result.session.token)


def test_sign_out_after_link_revokes_successor(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    linked = services.orchestrator.sign_up(
        _input(), current_session_token=anonymous.session.token
    )

    services.orchestrator.sign_out(anonymous.session.token)

    with pytest.raises(SessionExpiredError):
        services.orchestrator.get_session(anonymous.session.token)
    assert services.orchestrator.get_session(linked.session.token).identity.id == (
        linked.identity.id
    )


def test_begin_link_requires_session_owning_source(services: Services) -> None:
    first = services.orchestrator.create_anonymous()
    second = services.orchestrator.create_anonymous()

    with pytest.raises(ValidationError, match="does not own"):
        services.orchestrator.begin_link(
            second.session.token, first.identity.id, _input(), "key-1"
        )


def test_explicit_begin_and_commit(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()

    request = services.orchestrator.begin_link(
        anonymous.session.token, anonymous.identity.id, _input(), "key-1", display_name="Ada"
    )
    result = services.orchestrator.commit_link(anonymous.session.token, request.id)

    assert result.link_request_id == request.id
    assert result.identity.display_name == "Ada"
    fetched = services.orchestrator.get_link_request(result.session.token, request.id)
    assert fetched.state is LinkState.COMMITTED
    assert fetched.result_identity_id == result.identity.id


def test_magic_link_signs_up_new_identity(services: Services) -> None:
    services.orchestrator.request_magic_link(" Ada@Example.com ")

    email, token = services.sender.sent[-1]
    assert email == "ada@example.com"

    result = services.orchestrator.verify_magic_link(token)

    assert result.identity.kind is IdentityKind.PERMANENT
    assert result.identity.credential == Credential(
        kind=CredentialKind.MAGIC_LINK, email="ada@example.com"
    )


def test_magic_link_is_single_use(services: Services) -> None:
    services.orchestrator.request_magic_link("ada@example.com")
    token = services.sender.last_token
    services.orchestrator.verify_magic_link(token)

    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.verify_magic_link(token)


def test_magic_link_expires(services: Services) -> None:
    services.orchestrator.request_magic_link("ada@example.com")
    services.clock.advance(minutes=6)

    with pytest.raises(InvalidCredentialsError):
        services.orchestrator.verify_magic_link(services.sender.last_token)


def test_magic_link_with_anonymous_session_links(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    seeded = set(seed_resources(services.uow_factory, anonymous.identity.id, 2))
    services.orchestrator.request_magic_link("ada@example.com")

    result = services.orchestrator.verify_magic_link(
        services.sender.last_token, current_session_token=anonymous.session.token
    )

    assert result.linked
    assert result.identity.linked_from == anonymous.identity.id
    assert resource_ids(services.uow_factory, result.identity.id) == seeded


def test_magic_link_for_existing_email_signs_in(services: Services) -> None:
    existing = services.orchestrator.sign_up(_input())
    services.orchestrator.request_magic_link("ada@example.com")

    result = services.orchestrator.verify_magic_link(services.sender.last_token)

    assert result.identity.id == existing.identity.id
    assert not result.linked


def test_unknown_link_request(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()

    with pytest.raises(LinkRequestNotFoundError):
        services.orchestrator.get_link_request(anonymous.session.token, uuid.uuid4())


def test_link_request_is_hidden_from_other_sessions(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    stranger = services.orchestrator.create_anonymous()
    request = services.orchestrator.begin_link(
        anonymous.session.token, anonymous.identity.id, _input(), "key-1"
    )

    with pytest.raises(LinkRequestNotFoundError):
        services.orchestrator.get_link_request(stranger.session.token, request.id)
    with pytest.raises(LinkRequestNotFoundError):
        services.orchestrator.commit_link(stranger.session.token, request.id)
    with pytest.raises(SessionExpiredError):
        services.orchestrator.commit_link("not-a-token", request.id)

    assert (
        services.orchestrator.get_link_request(anonymous.session.token, request.id).state
        is LinkState.PENDING
    )


def test_commit_replay_accepts_source_and_result_sessions(services: Services) -> None:
    anonymous = services.orchestrator.create_anonymous()
    request = services.orchestrator.begin_link(
        anonymous.session.token, anonymous.identity.id, _input(), "key-1"
    )
    first = services.orchestrator.commit_link(anonymous.session.token, request.id)

    # the anonymous token now resolves to the linked identity
    again = services.orchestrator.commit_link(anonymous.session.token, request.id)
    by_result = services.orchestrator.commit_link(first.session.token, request.id)

    assert again.session.token == first.session.token
    assert by_result.identity.id == first.identity.id
