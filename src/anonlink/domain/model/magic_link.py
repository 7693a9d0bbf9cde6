"""Single-use passwordless sign-in tokens."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anonlink.domain.model.entity import utcnow

if TYPE_CHECKING:
    from datetime import datetime, timedelta


@dataclass(eq=False, kw_only=True)
class MagicLinkToken:
    token: str = field(default_factory=lambda: secrets.token_urlsafe(24), repr=False)
    email: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime
    consumed_at: datetime | None = None

    @classmethod
    def issue(cls, *, email: str, now: datetime, ttl: timedelta) -> MagicLinkToken:
        return cls(email=email, created_at=now, expires_at=now + ttl)

    def is_usable(self, now: datetime) -> bool:
        return self.consumed_at is None and self.expires_at > now

    def consume(self, now: datetime) -> None:
        self.consumed_at = now
