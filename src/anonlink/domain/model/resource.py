"""Ownership records for user data accumulated under an identity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anonlink.domain.model.entity import Entity, utcnow

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@dataclass(eq=False, kw_only=True)
class OwnedResource(Entity):
    owner_id: UUID
    kind: str
    label: str | None = None
    created_at: datetime = field(default_factory=utcnow)
