"""Client-side views of identities and sessions, and the cache's published state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from anonlink.domain.model.enums import IdentityKind, LinkState

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class SyncState(StrEnum):
    UNINITIALIZED = "uninitialized"
    SYNCING = "syncing"
    READY = "ready"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class IdentityView:
    id: UUID
    kind: IdentityKind
    display_name: str
    email: str | None = None
    linked_from: UUID | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.kind is IdentityKind.ANONYMOUS


@dataclass(frozen=True, slots=True)
class SessionView:
    """Opaque bearer token plus its expiry; the token's contents are never inspected."""

    token: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class AuthPayload:
    identity: IdentityView
    session: SessionView


@dataclass(frozen=True, slots=True)
class LinkStatus:
    id: UUID
    state: LinkState
    source_identity_id: UUID
    result_identity_id: UUID | None = None
    failure_reason: str | None = None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """What the cache currently presents. Identity and session always change together."""

    identity: IdentityView | None = None
    session: SessionView | None = None
    observation: int = 0

    @property
    def is_signed_in(self) -> bool:
        return self.identity is not None and self.session is not None

    @classmethod
    def from_payload(cls, payload: AuthPayload | None, *, observation: int) -> SessionSnapshot:
        if payload is None:
            return cls(observation=observation)
        return cls(identity=payload.identity, session=payload.session, observation=observation)


@dataclass(frozen=True, slots=True)
class SessionChange:
    previous: SessionSnapshot
    current: SessionSnapshot
    reason: str

    @property
    def identity_changed(self) -> bool:
        before = self.previous.identity.id if self.previous.identity else None
        after = self.current.identity.id if self.current.identity else None
        return before != after
