"""Request and response bodies for the identity HTTP API (camelCase on the wire)."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from anonlink.domain.credentials import CredentialInput
from anonlink.domain.model import Identity, IdentityKind, LinkRequest, LinkState, Session


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Requests --------------------------------------------------------------------


class CredentialBody(ApiModel):
    email: str = Field(min_length=3, max_length=320)
    password: str | None = Field(default=None, max_length=1024)

    def to_input(self) -> CredentialInput:
        return CredentialInput(email=self.email, password=self.password)


class SignUpBody(ApiModel):
    credential: CredentialBody
    current_session_token: str | None = None
    display_name: str | None = Field(default=None, max_length=200)
    idempotency_key: str | None = Field(default=None, max_length=200)


class SignInBody(ApiModel):
    credential: CredentialBody
    current_session_token: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=200)


class BeginLinkBody(ApiModel):
    source_identity_id: UUID
    target_credential: CredentialBody
    idempotency_key: str = Field(min_length=1, max_length=200)
    display_name: str | None = Field(default=None, max_length=200)


class CommitLinkBody(ApiModel):
    link_request_id: UUID


class MagicLinkBody(ApiModel):
    email: str = Field(min_length=3, max_length=320)


class VerifyMagicLinkBody(ApiModel):
    token: str = Field(min_length=1, max_length=128)
    current_session_token: str | None = None
    display_name: str | None = Field(default=None, max_length=200)


# Responses -------------------------------------------------------------------


class IdentityOut(ApiModel):
    id: UUID
    kind: IdentityKind
    display_name: str
    email: str | None = None
    linked_from: UUID | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, identity: Identity) -> IdentityOut:
        credential = identity.credential
        return cls(
            id=identity.id,
            kind=identity.kind,
            display_name=identity.display_name,
            email=credential.email if credential is not None else None,
            linked_from=identity.linked_from,
            created_at=identity.created_at,
        )


class SessionOut(ApiModel):
    token: str
    expires_at: datetime

    @classmethod
    def from_domain(cls, session: Session) -> SessionOut:
        return cls(token=session.token, expires_at=session.expires_at)


class AuthOut(ApiModel):
    identity: IdentityOut
    session: SessionOut
    link_request_id: UUID | None = None


class LinkRequestOut(ApiModel):
    id: UUID
    state: LinkState
    source_identity_id: UUID
    result_identity_id: UUID | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, request: LinkRequest) -> LinkRequestOut:
        return cls(
            id=request.id,
            state=request.state,
            source_identity_id=request.source_identity_id,
            result_identity_id=request.result_identity_id,
            failure_reason=request.failure_reason,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )


class ErrorOut(ApiModel):
    detail: str
    code: str
    retryable: bool = False
    anonymous_data_intact: bool | None = None
