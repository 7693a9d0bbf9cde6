"""Sessions and the re-pointing records left behind by a link commit."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anonlink.domain.model.entity import Entity, utcnow

if TYPE_CHECKING:
    from datetime import datetime, timedelta
    from uuid import UUID

TOKEN_BYTES = 32


def new_session_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


@dataclass(eq=False, kw_only=True)
class Session(Entity):
    identity_id: UUID
    token: str = field(default_factory=new_session_token, repr=False)
    issued_at: datetime = field(default_factory=utcnow)
    expires_at: datetime
    refreshable: bool = True
    revoked_at: datetime | None = None

    @classmethod
    def issue(cls, *, identity_id: UUID, now: datetime, ttl: timedelta) -> Session:
        return cls(identity_id=identity_id, issued_at=now, expires_at=now + ttl)

    def is_live(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now

    def revoke(self, now: datetime) -> None:
        if self.revoked_at is None:
            self.revoked_at = now

    def extend_if_due(self, now: datetime, *, ttl: timedelta, update_age: timedelta) -> bool:
        """Slide the expiry forward once ``update_age`` has passed since the last extension."""

        if not self.refreshable or not self.is_live(now):
            return False
        last_extended = self.expires_at - ttl
        if now - last_extended < update_age:
            return False
        self.expires_at = now + ttl
        return True


@dataclass(eq=False, kw_only=True)
class SessionRepoint:
    """``old_token`` was held by an anonymous session; it now resolves to ``new_session_id``."""

    old_token: str = field(repr=False)
    old_session_id: UUID
    new_session_id: UUID
    link_request_id: UUID
    created_at: datetime = field(default_factory=utcnow)
