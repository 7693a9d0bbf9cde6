"""Pydantic models describing the identity API payloads as seen by a client."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from anonlink.domain.model.enums import IdentityKind, LinkState


class AuthApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, extra="ignore", populate_by_name=True)


class IdentityPayload(AuthApiModel):
    id: UUID
    kind: IdentityKind
    display_name: str
    email: str | None = None
    linked_from: UUID | None = None


class SessionPayload(AuthApiModel):
    token: str
    expires_at: datetime


class AuthResponse(AuthApiModel):
    identity: IdentityPayload
    session: SessionPayload
    link_request_id: UUID | None = None


class LinkRequestPayload(AuthApiModel):
    id: UUID
    state: LinkState
    source_identity_id: UUID
    result_identity_id: UUID | None = None
    failure_reason: str | None = None


class ErrorPayload(AuthApiModel):
    detail: str = "Request failed"
    code: str = "error"
    retryable: bool = False
    anonymous_data_intact: bool | None = None
