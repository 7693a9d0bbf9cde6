"""SQLAlchemy mapping metadata for the identity store."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    String,
    Table,
    TypeDecorator,
    Uuid,
    orm,
)
from sqlalchemy.orm import configure_mappers

from anonlink.domain.model import (
    CredentialKind,
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
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]
EMAIL_LENGTH = 320
TOKEN_LENGTH = 128


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Identities and sessions -----------------------------------------------------

identity_table = Table(
    "identity",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("kind", Enum(IdentityKind, native_enum=False, length=16), nullable=False),
    Column("display_name", String(200), nullable=False),
    # no foreign key: the anonymous row is deleted after a link
    Column("linked_from", UUIDColumnType, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Column("archived_at", UTCDateTime(), nullable=True),
    Column("lease_owner", UUIDColumnType, nullable=True),
    Column("lease_expires_at", UTCDateTime(), nullable=True),
    Column(
        "credential_kind",
        Enum(CredentialKind, native_enum=False, length=16),
        key="_credential_kind",
        nullable=True,
    ),
    Column(
        "credential_email",
        String(EMAIL_LENGTH),
        key="_credential_email",
        nullable=True,
        unique=True,
    ),
    Column("credential_secret", String(256), key="_credential_secret", nullable=True),
    Index("ix_identity_linked_from", "linked_from"),
)

session_table = Table(
    "session",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "identity_id",
        UUIDColumnType,
        ForeignKey("identity.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("token", String(TOKEN_LENGTH), nullable=False, unique=True),
    Column("issued_at", UTCDateTime(), nullable=False),
    Column("expires_at", UTCDateTime(), nullable=False),
    Column("refreshable", Boolean, nullable=False, default=True),
    Column("revoked_at", UTCDateTime(), nullable=True),
    Index("ix_session_identity_id", "identity_id"),
)

session_repoint_table = Table(
    "session_repoint",
    mapper_registry.metadata,
    Column("old_token", String(TOKEN_LENGTH), primary_key=True),
    Column("old_session_id", UUIDColumnType, nullable=False),
    Column("new_session_id", UUIDColumnType, nullable=False),
    Column("link_request_id", UUIDColumnType, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Index("ix_session_repoint_new_session_id", "new_session_id"),
)

# Linking ---------------------------------------------------------------------

link_request_table = Table(
    "link_request",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("idempotency_key", String(200), nullable=False, unique=True),
    Column("source_identity_id", UUIDColumnType, nullable=False),
    Column("state", Enum(LinkState, native_enum=False, length=16), nullable=False),
    Column("display_name", String(200), nullable=True),
    Column("merge_into_id", UUIDColumnType, nullable=True),
    Column("result_identity_id", UUIDColumnType, nullable=True),
    Column("result_session_id", UUIDColumnType, nullable=True),
    Column("failure_reason", String(500), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Column(
        "target_kind",
        Enum(CredentialKind, native_enum=False, length=16),
        key="_target_kind",
        nullable=False,
    ),
    Column("target_email", String(EMAIL_LENGTH), key="_target_email", nullable=False),
    Column("target_secret", String(256), key="_target_secret", nullable=True),
    Index("ix_link_request_source_identity_id", "source_identity_id"),
    Index("ix_link_request_state", "state"),
)

owned_resource_table = Table(
    "owned_resource",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("owner_id", UUIDColumnType, ForeignKey("identity.id"), nullable=False),
    Column("kind", String(64), nullable=False),
    Column("label", String(200), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Index("ix_owned_resource_owner_id", "owner_id"),
)

magic_link_token_table = Table(
    "magic_link_token",
    mapper_registry.metadata,
    Column("token", String(TOKEN_LENGTH), primary_key=True),
    Column("email", String(EMAIL_LENGTH), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("expires_at", UTCDateTime(), nullable=False),
    Column("consumed_at", UTCDateTime(), nullable=True),
    Index("ix_magic_link_token_email", "email"),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(Identity, identity_table)
    mapper_registry.map_imperatively(Session, session_table)
    mapper_registry.map_imperatively(SessionRepoint, session_repoint_table)
    mapper_registry.map_imperatively(LinkRequest, link_request_table)
    mapper_registry.map_imperatively(OwnedResource, owned_resource_table)
    mapper_registry.map_imperatively(MagicLinkToken, magic_link_token_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
