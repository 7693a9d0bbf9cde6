"""identity store

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_KIND = sa.Enum("ANONYMOUS", "PERMANENT", name="identitykind", native_enum=False, length=16)
_CREDENTIAL_KIND = sa.Enum(
    "PASSWORD", "MAGIC_LINK", name="credentialkind", native_enum=False, length=16
)
_LINK_STATE = sa.Enum(
    "PENDING",
    "MIGRATING",
    "COMMITTED",
    "FAILED",
    "CONFLICT",
    name="linkstate",
    native_enum=False,
    length=16,
)


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column[object]:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "identity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("kind", _KIND, nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("linked_from", sa.Uuid(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("archived_at", nullable=True),
        sa.Column("lease_owner", sa.Uuid(), nullable=True),
        _timestamp("lease_expires_at", nullable=True),
        sa.Column("credential_kind", _CREDENTIAL_KIND, nullable=True),
        sa.Column("credential_email", sa.String(length=320), nullable=True),
        sa.Column("credential_secret", sa.String(length=256), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_identity"),
        sa.UniqueConstraint("credential_email", name="uq_identity_credential_email"),
    )
    op.create_index("ix_identity_linked_from", "identity", ["linked_from"])

    op.create_table(
        "session",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("identity_id", sa.Uuid(), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        _timestamp("issued_at"),
        _timestamp("expires_at"),
        sa.Column("refreshable", sa.Boolean(), nullable=False),
        _timestamp("revoked_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["identity_id"],
            ["identity.id"],
            name="fk_session_identity_id_identity",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_session"),
        sa.UniqueConstraint("token", name="uq_session_token"),
    )
    op.create_index("ix_session_identity_id", "session", ["identity_id"])

    op.create_table(
        "session_repoint",
        sa.Column("old_token", sa.String(length=128), nullable=False),
        sa.Column("old_session_id", sa.Uuid(), nullable=False),
        sa.Column("new_session_id", sa.Uuid(), nullable=False),
        sa.Column("link_request_id", sa.Uuid(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("old_token", name="pk_session_repoint"),
    )
    op.create_index("ix_session_repoint_new_session_id", "session_repoint", ["new_session_id"])

    op.create_table(
        "link_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=200), nullable=False),
        sa.Column("source_identity_id", sa.Uuid(), nullable=False),
        sa.Column("state", _LINK_STATE, nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("merge_into_id", sa.Uuid(), nullable=True),
        sa.Column("result_identity_id", sa.Uuid(), nullable=True),
        sa.Column("result_session_id", sa.Uuid(), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("target_kind", _CREDENTIAL_KIND, nullable=False),
        sa.Column("target_email", sa.String(length=320), nullable=False),
        sa.Column("target_secret", sa.String(length=256), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_link_request"),
        sa.UniqueConstraint("idempotency_key", name="uq_link_request_idempotency_key"),
    )
    op.create_index(
        "ix_link_request_source_identity_id", "link_request", ["source_identity_id"]
    )
    op.create_index("ix_link_request_state", "link_request", ["state"])

    op.create_table(
        "owned_resource",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("label", sa.String(length=200), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["identity.id"], name="fk_owned_resource_owner_id_identity"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_owned_resource"),
    )
    op.create_index("ix_owned_resource_owner_id", "owned_resource", ["owner_id"])

    op.create_table(
        "magic_link_token",
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        _timestamp("created_at"),
        _timestamp("expires_at"),
        _timestamp("consumed_at", nullable=True),
        sa.PrimaryKeyConstraint("token", name="pk_magic_link_token"),
    )
    op.create_index("ix_magic_link_token_email", "magic_link_token", ["email"])


def downgrade() -> None:
    op.drop_index("ix_magic_link_token_email", table_name="magic_link_token")
    op.drop_table("magic_link_token")
    op.drop_index("ix_owned_resource_owner_id", table_name="owned_resource")
    op.drop_table("owned_resource")
    op.drop_index("ix_link_request_state", table_name="link_request")
    op.drop_index("ix_link_request_source_identity_id", table_name="link_request")
    op.drop_table("link_request")
    op.drop_index("ix_session_repoint_new_session_id", table_name="session_repoint")
    op.drop_table("session_repoint")
    op.drop_index("ix_session_identity_id", table_name="session")
    op.drop_table("session")
    op.drop_index("ix_identity_linked_from", table_name="identity")
    op.drop_table("identity")
