"""Port for migrating owned data between identities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from anonlink.domain.ports.unit_of_work import IdentityUnitOfWork


@runtime_checkable
class ResourceMigrator(Protocol):
    """Moves every resource owned by ``source_id`` to ``target_id``.

    Runs inside the caller's unit of work and must not commit: the link commit is
    all-or-nothing with the identity switch.
    """

    def migrate(self, uow: IdentityUnitOfWork, *, source_id: UUID, target_id: UUID) -> int: ...


class OwnedResourceMigrator:
    """Default migrator re-pointing the generic ``owned_resource`` records."""

    def migrate(self, uow: IdentityUnitOfWork, *, source_id: UUID, target_id: UUID) -> int:
        return uow.repositories.resources.reassign_owner(source_id=source_id, target_id=target_id)
