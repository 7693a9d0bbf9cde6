"""Identities: anonymous or permanent, never both."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anonlink.domain.model.entity import Entity, utcnow
from anonlink.domain.model.enums import CredentialKind, IdentityKind

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@dataclass(frozen=True, slots=True)
class Credential:
    """What proves ownership of a permanent identity.

    ``secret_hash`` is only set for password credentials; a magic-link credential
    binds the email address alone.
    """

    kind: CredentialKind
    email: str
    secret_hash: str | None = None

    def __post_init__(self) -> None:
        if self.kind is CredentialKind.PASSWORD and not self.secret_hash:
            raise ValueError("password credentials require a secret hash")
        if self.kind is CredentialKind.MAGIC_LINK and self.secret_hash is not None:
            raise ValueError("magic-link credentials carry no secret")


@dataclass(eq=False, kw_only=True)
class Identity(Entity):
    """A user identity.

    ``kind`` is fixed at creation. Graduation from anonymous to permanent produces
    a new permanent row whose ``linked_from`` points back at the anonymous one, so a
    row never flips kind in place. The lease columns are only touched by the
    linking coordinator.
    """

    kind: IdentityKind
    display_name: str
    linked_from: UUID | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    archived_at: datetime | None = None

    lease_owner: UUID | None = field(default=None, repr=False)
    lease_expires_at: datetime | None = field(default=None, repr=False)

    _credential_kind: CredentialKind | None = field(default=None, repr=False)
    _credential_email: str | None = field(default=None, repr=False)
    _credential_secret: str | None = field(default=None, repr=False)

    @classmethod
    def anonymous(cls, *, display_name: str) -> Identity:
        return cls(kind=IdentityKind.ANONYMOUS, display_name=display_name)

    @classmethod
    def permanent(
        cls,
        *,
        credential: Credential,
        display_name: str,
        linked_from: UUID | None = None,
    ) -> Identity:
        return cls(
            kind=IdentityKind.PERMANENT,
            display_name=display_name,
            linked_from=linked_from,
            _credential_kind=credential.kind,
            _credential_email=credential.email,
            _credential_secret=credential.secret_hash,
        )

    def __post_init__(self) -> None:
        match self.kind:
            case IdentityKind.ANONYMOUS:
                if self._credential_kind is not None:
                    raise ValueError("anonymous identities cannot hold a credential")
                if self.linked_from is not None:
                    raise ValueError("anonymous identities are never produced by a link")
            case IdentityKind.PERMANENT:
                if self._credential_kind is None or self._credential_email is None:
                    raise ValueError("permanent identities require a credential")

    @property
    def credential(self) -> Credential | None:
        if self._credential_kind is None or self._credential_email is None:
            return None
        return Credential(
            kind=self._credential_kind,
            email=self._credential_email,
            secret_hash=self._credential_secret,
        )

    @property
    def is_anonymous(self) -> bool:
        return self.kind is IdentityKind.ANONYMOUS

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def has_live_lease(self, now: datetime) -> bool:
        return (
            self.lease_owner is not None
            and self.lease_expires_at is not None
            and self.lease_expires_at > now
        )

    def archive(self, now: datetime) -> None:
        self.archived_at = now
        self.lease_owner = None
        self.lease_expires_at = None
        self.updated_at = now
