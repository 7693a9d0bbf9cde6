from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from anonlink.domain.model import (
    Credential,
    CredentialKind,
    Identity,
    IdentityKind,
    MagicLinkToken,
    Session,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _password(email: str = "ada@example.com") -> Credential:
    return Credential(kind=CredentialKind.PASSWORD, email=email, secret_hash="hash")


def test_anonymous_identity_has_no_credential() -> None:
    identity = Identity.anonymous(display_name="Creative Artist")

    assert identity.kind is IdentityKind.ANONYMOUS
    assert identity.is_anonymous
    assert identity.credential is None
    assert identity.linked_from is None


def test_anonymous_identity_rejects_credential_columns() -> None:
    with pytest.raises(ValueError, match="cannot hold a credential"):
        Identity(
            kind=IdentityKind.ANONYMOUS,
            display_name="x",
            _credential_kind=CredentialKind.MAGIC_LINK,
            _credential_email="a@example.com",
        )


def test_anonymous_identity_rejects_linked_from() -> None:
    with pytest.raises(ValueError, match="never produced by a link"):
        Identity(kind=IdentityKind.ANONYMOUS, display_name="x", linked_from=uuid.uuid4())


def test_permanent_identity_requires_credential() -> None:
    with pytest.raises(ValueError, match="require a credential"):
        Identity(kind=IdentityKind.PERMANENT, display_name="x")


def test_permanent_identity_round_trips_credential() -> None:
    source = uuid.uuid4()
    identity = Identity.permanent(credential=_password(), display_name="Ada", linked_from=source)

    assert identity.kind is IdentityKind.PERMANENT
    assert identity.credential == _password()
    assert identity.linked_from == source


def test_credential_kind_constraints() -> None:
    with pytest.raises(ValueError, match="secret hash"):
        Credential(kind=CredentialKind.PASSWORD, email="a@example.com")
    with pytest.raises(ValueError, match="no secret"):
        Credential(kind=CredentialKind.MAGIC_LINK, email="a@example.com", secret_hash="x")


def test_lease_liveness_depends_on_expiry() -> None:
    identity = Identity.anonymous(display_name="x")
    assert identity.has_live_lease(NOW) is False

    identity.lease_owner = uuid.uuid4()
    identity.lease_expires_at = NOW + timedelta(seconds=30)
    assert identity.has_live_lease(NOW) is True
    assert identity.has_live_lease(NOW + timedelta(seconds=30)) is False


def test_archive_clears_lease() -> None:
    identity = Identity.anonymous(display_name="x")
    identity.lease_owner = uuid.uuid4()
    identity.lease_expires_at = NOW + timedelta(seconds=30)

    identity.archive(NOW)

    assert identity.is_archived
    assert identity.lease_owner is None
    assert identity.lease_expires_at is None


def test_session_liveness_and_revocation() -> None:
    session = Session.issue(identity_id=uuid.uuid4(), now=NOW, ttl=timedelta(days=30))

    assert session.is_live(NOW)
    assert not session.is_live(NOW + timedelta(days=30))

    session.revoke(NOW)
    first_revocation = session.revoked_at
    session.revoke(NOW + timedelta(hours=1))

    assert not session.is_live(NOW)
    assert session.revoked_at == first_revocation


def test_session_tokens_are_unique_and_opaque() -> None:
    identity_id = uuid.uuid4()
    tokens = {
        Session.issue(identity_id=identity_id, now=NOW, ttl=timedelta(days=1)).token
        for _ in range(20)
    }

    assert len(tokens) == 20
    assert all(str(identity_id) not in token for token in tokens)


def test_session_extends_only_after_update_age() -> None:
    ttl = timedelta(days=30)
    update_age = timedelta(days=1)
    session = Session.issue(identity_id=uuid.uuid4(), now=NOW, ttl=ttl)

    assert session.extend_if_due(NOW + timedelta(hours=12), ttl=ttl, update_age=update_age) is False
    assert session.expires_at == NOW + ttl

    later = NOW + timedelta(days=2)
    assert session.extend_if_due(later, ttl=ttl, update_age=update_age) is True
    assert session.expires_at == later + ttl


def test_session_does_not_extend_when_not_refreshable() -> None:
    ttl = timedelta(days=30)
    session = Session.issue(identity_id=uuid.uuid4(), now=NOW, ttl=ttl)
    session.refreshable = False

    assert session.extend_if_due(NOW + timedelta(days=5), ttl=ttl, update_age=timedelta(days=1)) is False


def test_magic_link_token_is_single_use_and_expires() -> None:
    token = MagicLinkToken.issue(email="a@example.com", now=NOW, ttl=timedelta(minutes=5))

    assert token.is_usable(NOW)
    assert not token.is_usable(NOW + timedelta(minutes=5))

    token.consume(NOW)
    assert not token.is_usable(NOW)
