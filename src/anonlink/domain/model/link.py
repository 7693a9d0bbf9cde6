"""Link requests: the unit of work for an anonymous-to-permanent migration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anonlink.domain.model.entity import Entity, utcnow
from anonlink.domain.model.enums import CredentialKind, LinkState
from anonlink.domain.model.identity import Credential

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


_TRANSITIONS: dict[LinkState, frozenset[LinkState]] = {
    LinkState.PENDING: frozenset({LinkState.MIGRATING, LinkState.FAILED, LinkState.CONFLICT}),
    LinkState.MIGRATING: frozenset({LinkState.COMMITTED, LinkState.FAILED, LinkState.CONFLICT}),
    LinkState.COMMITTED: frozenset(),
    LinkState.FAILED: frozenset(),
    LinkState.CONFLICT: frozenset(),
}


class InvalidLinkTransitionError(ValueError):
    """Raised when a link request is moved out of a terminal state or skips a step."""


@dataclass(eq=False, kw_only=True)
class LinkRequest(Entity):
    idempotency_key: str
    source_identity_id: UUID
    state: LinkState = LinkState.PENDING

    display_name: str | None = None
    merge_into_id: UUID | None = None

    result_identity_id: UUID | None = None
    result_session_id: UUID | None = None
    failure_reason: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    _target_kind: CredentialKind = field(repr=False)
    _target_email: str = field(repr=False)
    _target_secret: str | None = field(default=None, repr=False)

    @classmethod
    def open(
        cls,
        *,
        idempotency_key: str,
        source_identity_id: UUID,
        target_credential: Credential,
        display_name: str | None = None,
        merge_into_id: UUID | None = None,
        now: datetime,
    ) -> LinkRequest:
        return cls(
            idempotency_key=idempotency_key,
            source_identity_id=source_identity_id,
            display_name=display_name,
            merge_into_id=merge_into_id,
            created_at=now,
            updated_at=now,
            _target_kind=target_credential.kind,
            _target_email=target_credential.email,
            _target_secret=target_credential.secret_hash,
        )

    @property
    def target_credential(self) -> Credential:
        return Credential(
            kind=self._target_kind,
            email=self._target_email,
            secret_hash=self._target_secret,
        )

    def transition(self, target: LinkState, now: datetime, *, reason: str | None = None) -> None:
        if target is self.state and target is LinkState.MIGRATING:
            # resuming after a retried commit
            self.updated_at = now
            return
        if target not in _TRANSITIONS[self.state]:
            raise InvalidLinkTransitionError(f"cannot move link request from {self.state} to {target}")
        self.state = target
        self.updated_at = now
        if reason is not None:
            self.failure_reason = reason

    def mark_committed(self, *, identity_id: UUID, session_id: UUID, now: datetime) -> None:
        self.transition(LinkState.COMMITTED, now)
        self.result_identity_id = identity_id
        self.result_session_id = session_id
