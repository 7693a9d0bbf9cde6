"""Ports for persisting identities, sessions and link requests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from anonlink.domain.model import (
    Identity,
    LinkRequest,
    MagicLinkToken,
    OwnedResource,
    Session,
    SessionRepoint,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class IdentityRepository(Repository[Identity], Protocol):
    """Persistence contract for identities, including the per-row lease."""

    def get(self, identity_id: UUID) -> Identity | None: ...

    def get_by_email(self, email: str) -> Identity | None: ...

    def remove(self, identity: Identity) -> None: ...

    def acquire_lease(
        self, identity_id: UUID, *, owner: UUID, now: datetime, expires_at: datetime
    ) -> bool:
        """Conditionally claim the row; succeeds only when no live lease exists."""
        ...

    def renew_lease(
        self, identity_id: UUID, *, owner: UUID, now: datetime, expires_at: datetime
    ) -> bool:
        """Extend a lease that is still held by ``owner``."""
        ...

    def release_lease(self, identity_id: UUID, *, owner: UUID) -> bool: ...


@runtime_checkable
class SessionRepository(Repository[Session], Protocol):
    def get(self, session_id: UUID) -> Session | None: ...

    def get_by_token(self, token: str) -> Session | None: ...

    def list_live_for_identity(self, identity_id: UUID, *, now: datetime) -> list[Session]: ...

    def remove_for_identity(self, identity_id: UUID) -> int: ...


@runtime_checkable
class SessionRepointRepository(Repository[SessionRepoint], Protocol):
    def get_by_old_token(self, token: str) -> SessionRepoint | None: ...


@runtime_checkable
class LinkRequestRepository(Repository[LinkRequest], Protocol):
    def get(self, link_request_id: UUID) -> LinkRequest | None: ...

    def get_for_update(self, link_request_id: UUID) -> LinkRequest | None: ...

    def get_by_idempotency_key(self, key: str) -> LinkRequest | None: ...

    def list_in_flight(self, *, source_identity_id: UUID | None = None) -> list[LinkRequest]: ...


@runtime_checkable
class OwnedResourceRepository(Repository[OwnedResource], Protocol):
    def count_for_owner(self, owner_id: UUID) -> int: ...

    def list_for_owner(self, owner_id: UUID) -> list[OwnedResource]: ...

    def reassign_owner(self, *, source_id: UUID, target_id: UUID) -> int: ...


@runtime_checkable
class MagicLinkRepository(Repository[MagicLinkToken], Protocol):
    def get(self, token: str) -> MagicLinkToken | None: ...
