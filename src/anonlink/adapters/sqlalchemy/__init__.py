"""SQLAlchemy adapter package for the identity store."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyIdentityRepository,
    SqlAlchemyLinkRequestRepository,
    SqlAlchemyMagicLinkRepository,
    SqlAlchemyOwnedResourceRepository,
    SqlAlchemySessionRepointRepository,
    SqlAlchemySessionRepository,
)
from .unit_of_work import (
    SqlAlchemyIdentityUnitOfWork,
    StartupError,
    create_store_engine,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyIdentityRepository",
    "SqlAlchemyIdentityUnitOfWork",
    "SqlAlchemyLinkRequestRepository",
    "SqlAlchemyMagicLinkRepository",
    "SqlAlchemyOwnedResourceRepository",
    "SqlAlchemySessionRepointRepository",
    "SqlAlchemySessionRepository",
    "StartupError",
    "create_all_tables",
    "create_store_engine",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
