"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class IdentityKind(StrEnum):
    ANONYMOUS = "anonymous"
    PERMANENT = "permanent"


class CredentialKind(StrEnum):
    PASSWORD = "password"  # noqa: S105
    MAGIC_LINK = "magic_link"


class LinkState(StrEnum):
    PENDING = "pending"
    MIGRATING = "migrating"
    COMMITTED = "committed"
    FAILED = "failed"
    CONFLICT = "conflict"

    @property
    def is_terminal(self) -> bool:
        return self in {LinkState.COMMITTED, LinkState.FAILED, LinkState.CONFLICT}

    @property
    def is_in_flight(self) -> bool:
        return self in {LinkState.PENDING, LinkState.MIGRATING}


class RetentionPolicy(StrEnum):
    """What happens to an anonymous identity row once it has been linked."""

    DELETE = "delete"
    ARCHIVE = "archive"
