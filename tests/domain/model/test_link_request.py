from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from anonlink.domain.model import (
    Credential,
    CredentialKind,
    InvalidLinkTransitionError,
    LinkRequest,
    LinkState,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _open() -> LinkRequest:
    return LinkRequest.open(
        idempotency_key="key-1",
        source_identity_id=uuid.uuid4(),
        target_credential=Credential(
            kind=CredentialKind.PASSWORD, email="ada@example.com", secret_hash="hash"
        ),
        now=NOW,
    )


def test_open_request_is_pending_and_keeps_target_credential() -> None:
    request = _open()

    assert request.state is LinkState.PENDING
    assert request.target_credential.email == "ada@example.com"
    assert request.target_credential.secret_hash == "hash"
    assert request.created_at == NOW


def test_happy_path_transitions() -> None:
    request = _open()
    later = NOW + timedelta(seconds=1)
    identity_id = uuid.uuid4()
    session_id = uuid.uuid4()

    request.transition(LinkState.MIGRATING, later)
    request.mark_committed(identity_id=identity_id, session_id=session_id, now=later)

    assert request.state is LinkState.COMMITTED
    assert request.result_identity_id == identity_id
    assert request.result_session_id == session_id
    assert request.updated_at == later


def test_migrating_can_be_resumed() -> None:
    request = _open()
    request.transition(LinkState.MIGRATING, NOW)
    request.transition(LinkState.MIGRATING, NOW + timedelta(seconds=5))

    assert request.state is LinkState.MIGRATING
    assert request.updated_at == NOW + timedelta(seconds=5)


@pytest.mark.parametrize("terminal", [LinkState.COMMITTED, LinkState.FAILED, LinkState.CONFLICT])
def test_terminal_states_are_final(terminal: LinkState) -> None:
    request = _open()
    request.transition(LinkState.MIGRATING, NOW)
    if terminal is LinkState.COMMITTED:
        request.mark_committed(identity_id=uuid.uuid4(), session_id=uuid.uuid4(), now=NOW)
    else:
        request.transition(terminal, NOW, reason="boom")

    assert request.state.is_terminal
    for target in LinkState:
        with pytest.raises(InvalidLinkTransitionError):
            request.transition(target, NOW)


def test_pending_cannot_skip_to_committed() -> None:
    request = _open()

    with pytest.raises(InvalidLinkTransitionError):
        request.transition(LinkState.COMMITTED, NOW)


def test_failure_reason_is_recorded() -> None:
    request = _open()
    request.transition(LinkState.FAILED, NOW, reason="lease expired")

    assert request.failure_reason == "lease expired"
    assert not request.state.is_in_flight
