"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from anonlink.domain.ports.persistence import (
        IdentityRepository,
        LinkRequestRepository,
        MagicLinkRepository,
        OwnedResourceRepository,
        SessionRepointRepository,
        SessionRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection.

    Leaving the ``with`` block through an exception rolls back. Implementations
    translate storage driver failures into :mod:`anonlink.domain.errors` types on
    the way out, so callers handle them outside the block.
    """

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def flush(self) -> None:
        """Push pending writes without committing, so later statements can reference them."""
        ...


@dataclass(slots=True)
class IdentityRepositories(RepositoryCollection):
    """Repositories backing the identity store."""

    identities: IdentityRepository
    sessions: SessionRepository
    repoints: SessionRepointRepository
    link_requests: LinkRequestRepository
    resources: OwnedResourceRepository
    magic_links: MagicLinkRepository


type IdentityUnitOfWork = UnitOfWork[IdentityRepositories]
