"""Public domain model surface."""

from __future__ import annotations

from anonlink.domain.model.entity import Entity, new_id, utcnow
from anonlink.domain.model.enums import CredentialKind, IdentityKind, LinkState, RetentionPolicy
from anonlink.domain.model.identity import Credential, Identity
from anonlink.domain.model.link import InvalidLinkTransitionError, LinkRequest
from anonlink.domain.model.magic_link import MagicLinkToken
from anonlink.domain.model.resource import OwnedResource
from anonlink.domain.model.session import Session, SessionRepoint, new_session_token

__all__ = [
    "Credential",
    "CredentialKind",
    "Entity",
    "Identity",
    "IdentityKind",
    "InvalidLinkTransitionError",
    "LinkRequest",
    "LinkState",
    "MagicLinkToken",
    "OwnedResource",
    "RetentionPolicy",
    "Session",
    "SessionRepoint",
    "new_id",
    "new_session_token",
    "utcnow",
]
