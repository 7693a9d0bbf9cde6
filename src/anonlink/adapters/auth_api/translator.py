"""Translate identity API payloads into client-side views."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from anonlink.client.errors import AuthApiError
from anonlink.client.models import AuthPayload, IdentityView, LinkStatus, SessionView

from .schema import AuthResponse, ErrorPayload, LinkRequestPayload

if TYPE_CHECKING:
    import httpx


def _invalid_response(detail: str) -> AuthApiError:
    return AuthApiError(
        f"Unexpected response from auth service: {detail}",
        code="invalid_response",
        retryable=True,
    )


def read_json(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError as exc:
        raise _invalid_response(f"{response.status_code} body is not JSON") from exc


def parse_auth_payload(payload: object) -> AuthPayload:
    try:
        response = AuthResponse.model_validate(payload)
    except PydanticValidationError as exc:
        raise _invalid_response(f"{exc.error_count()} invalid auth fields") from exc
    identity = response.identity
    return AuthPayload(
        identity=IdentityView(
            id=identity.id,
            kind=identity.kind,
            display_name=identity.display_name,
            email=identity.email,
            linked_from=identity.linked_from,
        ),
        session=SessionView(token=response.session.token, expires_at=response.session.expires_at),
    )


def parse_link_status(payload: object) -> LinkStatus:
    try:
        request = LinkRequestPayload.model_validate(payload)
    except PydanticValidationError as exc:
        raise _invalid_response(f"{exc.error_count()} invalid link fields") from exc
    return LinkStatus(
        id=request.id,
        state=request.state,
        source_identity_id=request.source_identity_id,
        result_identity_id=request.result_identity_id,
        failure_reason=request.failure_reason,
    )


def error_from_response(response: httpx.Response) -> AuthApiError:
    try:
        error = ErrorPayload.model_validate(response.json())
    except (ValueError, PydanticValidationError):
        error = ErrorPayload(detail=response.reason_phrase or "Request failed")
    return AuthApiError(
        error.detail,
        code=error.code,
        status=response.status_code,
        retryable=error.retryable,
        anonymous_data_intact=error.anonymous_data_intact,
    )
