"""Ports (interfaces) the domain services depend on."""

from __future__ import annotations

from .credentials import CredentialHasher, MagicLinkSender
from .migration import OwnedResourceMigrator, ResourceMigrator
from .persistence import (
    IdentityRepository,
    LinkRequestRepository,
    MagicLinkRepository,
    OwnedResourceRepository,
    Repository,
    SessionRepointRepository,
    SessionRepository,
)
from .unit_of_work import IdentityRepositories, IdentityUnitOfWork, RepositoryCollection, UnitOfWork

__all__ = [
    "CredentialHasher",
    "IdentityRepositories",
    "IdentityRepository",
    "IdentityUnitOfWork",
    "LinkRequestRepository",
    "MagicLinkRepository",
    "MagicLinkSender",
    "OwnedResourceMigrator",
    "OwnedResourceRepository",
    "Repository",
    "RepositoryCollection",
    "ResourceMigrator",
    "SessionRepointRepository",
    "SessionRepository",
    "UnitOfWork",
]
