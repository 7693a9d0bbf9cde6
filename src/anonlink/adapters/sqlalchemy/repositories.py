"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

from sqlalchemy import delete, func, or_, select, update

from anonlink.adapters.sqlalchemy.mappings import (
    identity_table,
    link_request_table,
    owned_resource_table,
    session_table,
)
from anonlink.domain.model import (
    Identity,
    IdentityKind,
    LinkRequest,
    LinkState,
    MagicLinkToken,
    OwnedResource,
    Session,
    SessionRepoint,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import CursorResult, Executable
    from sqlalchemy.orm import Session as OrmSession


def _rowcount(session: OrmSession, statement: Executable) -> int:
    result = cast("CursorResult[object]", session.execute(statement))
    return result.rowcount


class SqlAlchemyIdentityRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: Identity) -> None:
        self.session.add(entity)

    def get(self, identity_id: UUID) -> Identity | None:
        return self.session.get(Identity, identity_id)

    def get_by_email(self, email: str) -> Identity | None:
        stmt = select(Identity).where(identity_table.c._credential_email == email)  # noqa: SLF001
        return self.session.execute(stmt).scalar_one_or_none()

    def remove(self, identity: Identity) -> None:
        self.session.delete(identity)

    def acquire_lease(
        self, identity_id: UUID, *, owner: UUID, now: datetime, expires_at: datetime
    ) -> bool:
        stmt = (
            update(identity_table)
            .where(identity_table.c.id == identity_id)
            .where(identity_table.c.kind == IdentityKind.ANONYMOUS)
            .where(identity_table.c.archived_at.is_(None))
            .where(
                or_(
                    identity_table.c.lease_owner.is_(None),
                    identity_table.c.lease_expires_at.is_(None),
                    identity_table.c.lease_expires_at <= now,
                )
            )
            .values(lease_owner=owner, lease_expires_at=expires_at, updated_at=now)
        )
        return _rowcount(self.session, stmt) == 1

    def renew_lease(
        self, identity_id: UUID, *, owner: UUID, now: datetime, expires_at: datetime
    ) -> bool:
        stmt = (
            update(identity_table)
            .where(identity_table.c.id == identity_id)
            .where(identity_table.c.lease_owner == owner)
            .values(lease_expires_at=expires_at, updated_at=now)
        )
        return _rowcount(self.session, stmt) == 1

    def release_lease(self, identity_id: UUID, *, owner: UUID) -> bool:
        stmt = (
            update(identity_table)
            .where(identity_table.c.id == identity_id)
            .where(identity_table.c.lease_owner == owner)
            .values(lease_owner=None, lease_expires_at=None)
        )
        return _rowcount(self.session, stmt) == 1


class SqlAlchemySessionRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: Session) -> None:
        self.session.add(entity)

    def get(self, session_id: UUID) -> Session | None:
        return self.session.get(Session, session_id)

    def get_by_token(self, token: str) -> Session | None:
        stmt = select(Session).where(session_table.c.token == token)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_live_for_identity(self, identity_id: UUID, *, now: datetime) -> list[Session]:
        stmt = (
            select(Session)
            .where(session_table.c.identity_id == identity_id)
            .where(session_table.c.revoked_at.is_(None))
            .where(session_table.c.expires_at > now)
            .order_by(session_table.c.issued_at)
        )
        return list(self.session.execute(stmt).scalars())

    def remove_for_identity(self, identity_id: UUID) -> int:
        stmt = delete(session_table).where(session_table.c.identity_id == identity_id)
        return _rowcount(self.session, stmt)


class SqlAlchemySessionRepointRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: SessionRepoint) -> None:
        self.session.add(entity)

    def get_by_old_token(self, token: str) -> SessionRepoint | None:
        return self.session.get(SessionRepoint, token)


class SqlAlchemyLinkRequestRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: LinkRequest) -> None:
        self.session.add(entity)

    def get(self, link_request_id: UUID) -> LinkRequest | None:
        return self.session.get(LinkRequest, link_request_id)

    def get_for_update(self, link_request_id: UUID) -> LinkRequest | None:
        """Lock the request row for the rest of the transaction, then load it fresh.

        The no-op write takes the row lock (the database write lock on SQLite), so
        concurrent transactions on the same request run one after the other and
        each sees what the previous one committed.
        """

        touch = (
            update(link_request_table)
            .where(link_request_table.c.id == link_request_id)
            .values(updated_at=link_request_table.c.updated_at)
        )
        if _rowcount(self.session, touch) == 0:
            return None
        stmt = (
            select(LinkRequest)
            .where(link_request_table.c.id == link_request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_idempotency_key(self, key: str) -> LinkRequest | None:
        stmt = select(LinkRequest).where(link_request_table.c.idempotency_key == key)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_in_flight(self, *, source_identity_id: UUID | None = None) -> list[LinkRequest]:
        stmt = select(LinkRequest).where(
            link_request_table.c.state.in_([LinkState.PENDING, LinkState.MIGRATING])
        )
        if source_identity_id is not None:
            stmt = stmt.where(link_request_table.c.source_identity_id == source_identity_id)
        return list(self.session.execute(stmt.order_by(link_request_table.c.created_at)).scalars())


class SqlAlchemyOwnedResourceRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: OwnedResource) -> None:
        self.session.add(entity)

    def count_for_owner(self, owner_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(owned_resource_table)
            .where(owned_resource_table.c.owner_id == owner_id)
        )
        return int(self.session.execute(stmt).scalar_one())

    def list_for_owner(self, owner_id: UUID) -> list[OwnedResource]:
        stmt = (
            select(OwnedResource)
            .where(owned_resource_table.c.owner_id == owner_id)
            .order_by(owned_resource_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def reassign_owner(self, *, source_id: UUID, target_id: UUID) -> int:
        stmt = (
            update(owned_resource_table)
            .where(owned_resource_table.c.owner_id == source_id)
            .values(owner_id=target_id)
        )
        return _rowcount(self.session, stmt)


class SqlAlchemyMagicLinkRepository:
    def __init__(self, session: OrmSession) -> None:
        self.session = session

    def add(self, entity: MagicLinkToken) -> None:
        self.session.add(entity)

    def get(self, token: str) -> MagicLinkToken | None:
        return self.session.get(MagicLinkToken, token)
