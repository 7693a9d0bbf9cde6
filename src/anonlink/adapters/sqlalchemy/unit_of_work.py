"""SQLAlchemy-backed units of work for the identity store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Final, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from anonlink.adapters.sqlalchemy.mappings import start_mappers
from anonlink.adapters.sqlalchemy.migrations import upgrade_head
from anonlink.adapters.sqlalchemy.repositories import (
    SqlAlchemyIdentityRepository,
    SqlAlchemyLinkRequestRepository,
    SqlAlchemyMagicLinkRepository,
    SqlAlchemyOwnedResourceRepository,
    SqlAlchemySessionRepointRepository,
    SqlAlchemySessionRepository,
)
from anonlink.config import get_database_config
from anonlink.domain.errors import (
    LeaseContentionError,
    StoreUnavailableError,
    UniqueViolationError,
)
from anonlink.domain.ports.unit_of_work import IdentityRepositories, RepositoryCollection

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine
    from sqlalchemy.engine.interfaces import DBAPIConnection

    from anonlink.domain.errors import AnonlinkError

log = getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS: Final[int] = 5000
_UNIQUE_CONSTRAINTS: Final[tuple[str, ...]] = (
    "credential_email",
    "idempotency_key",
    "token",
)
_LOCK_MESSAGES: Final[tuple[str, ...]] = ("database is locked", "database table is locked")
_LOCK_SQLSTATES: Final[frozenset[str]] = frozenset({"40001", "40P01", "55P03"})


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call anonlink.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def create_store_engine(database_uri: str) -> Engine:
    """Create an engine; SQLite connections wait on a busy timeout instead of failing at once."""

    if database_uri.startswith("sqlite"):
        engine = create_engine(
            database_uri,
            future=True,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_uri, future=True, pool_pre_ping=True)


def _enable_sqlite_foreign_keys(dbapi_connection: DBAPIConnection, connection_record: object) -> None:
    _ = connection_record
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, schema, and session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_store_engine(database_uri or get_database_config().uri)
    start_mappers()
    upgrade_head(engine=resolved_engine)
    log.info("Identity store ready on %s", resolved_engine.url.render_as_string(hide_password=True))

    _STATE.engine = resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    """Return whether the adapter has been initialised."""

    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def translate_error(exc: DBAPIError) -> AnonlinkError:
    """Map a driver failure onto the domain error taxonomy."""

    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if isinstance(exc, IntegrityError):
        constraint = next((name for name in _UNIQUE_CONSTRAINTS if name in message), None)
        return UniqueViolationError(constraint)
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in _LOCK_SQLSTATES or any(text in message for text in _LOCK_MESSAGES):
        return LeaseContentionError("Identity store row is locked by another writer")
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        return StoreUnavailableError(f"Identity store unavailable: {exc.orig}")
    return StoreUnavailableError(f"Identity store error: {exc.orig}")


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections.

    Driver errors escaping the block are re-raised as domain errors.
    """

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.session.close()
            self.session = None
        if isinstance(exc_value, DBAPIError):
            translated = translate_error(exc_value)
            log.debug("Translated %s into %s", type(exc_value).__name__, translated.code)
            raise translated from exc_value
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def flush(self) -> None:
        self.session.flush()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyIdentityUnitOfWork(BaseSqlAlchemyUnitOfWork[IdentityRepositories]):
    """Unit of work managing SQLAlchemy sessions for the identity store."""

    def _build_repositories(self, session: Session) -> IdentityRepositories:
        return IdentityRepositories(
            identities=SqlAlchemyIdentityRepository(session),
            sessions=SqlAlchemySessionRepository(session),
            repoints=SqlAlchemySessionRepointRepository(session),
            link_requests=SqlAlchemyLinkRequestRepository(session),
            resources=SqlAlchemyOwnedResourceRepository(session),
            magic_links=SqlAlchemyMagicLinkRepository(session),
        )


if TYPE_CHECKING:
    from anonlink.domain.ports.unit_of_work import IdentityUnitOfWork

    _uow_check: IdentityUnitOfWork = SqlAlchemyIdentityUnitOfWork()
