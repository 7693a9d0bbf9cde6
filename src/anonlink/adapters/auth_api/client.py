"""HTTP client for the identity API."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

import httpx

from anonlink.adapters.http_resilience import ResilientClient
from anonlink.client.errors import AuthApiError
from anonlink.config.client import get_client_config

from .translator import error_from_response, parse_auth_payload, parse_link_status, read_json

if TYPE_CHECKING:
    from types import TracebackType
    from uuid import UUID

    from anonlink.client.models import AuthPayload, LinkStatus
    from anonlink.config.http_resilience import ResilienceConfig
    from anonlink.domain.credentials import CredentialInput

log = getLogger(__name__)


def _credential_body(credential: CredentialInput) -> dict[str, str]:
    body = {"email": credential.email}
    if credential.password is not None:
        body["password"] = credential.password
    return body


def _without_none(body: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in body.items() if value is not None}


class HttpAuthApi:
    """:class:`~anonlink.client.ports.AuthApi` over HTTP.

    Connection failures surface as :class:`AuthApiError` with code ``network_error``.
    """

    def __init__(
        self,
        resilience: ResilienceConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.resilience = resilience or get_client_config().resilience
        self._client = ResilientClient(self.resilience, transport=transport)

    async def __aenter__(self) -> HttpAuthApi:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, object] | None = None,
        token: str | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token is not None else None
        try:
            response = await self._client.request(method, path, json=body, headers=headers)
        except httpx.HTTPError as exc:
            log.warning("%s %s failed: %s", method, path, type(exc).__name__)
            raise AuthApiError(
                f"Auth service unreachable: {exc}",
                code="network_error",
                retryable=True,
            ) from exc
        if response.is_error:
            raise error_from_response(response)
        return response

    async def create_anonymous(self) -> AuthPayload:
        response = await self._call("POST", "/identity/anonymous")
        return parse_auth_payload(read_json(response))

    async def get_session(self, token: str) -> AuthPayload | None:
        try:
            response = await self._call("GET", "/identity/session", token=token)
        except AuthApiError as exc:
            if exc.status == httpx.codes.UNAUTHORIZED:
                return None
            raise
        return parse_auth_payload(read_json(response))

    async def sign_up(
        self,
        credential: CredentialInput,
        *,
        current_session_token: str | None = None,
        display_name: str | None = None,
    ) -> AuthPayload:
        body = _without_none(
            {
                "credential": _credential_body(credential),
                "currentSessionToken": current_session_token,
                "displayName": display_name,
            }
        )
        response = await self._call("POST", "/identity/signup", body=body)
        return parse_auth_payload(read_json(response))

    async def sign_in(
        self,
        credential: CredentialInput,
        *,
        current_session_token: str | None = None,
    ) -> AuthPayload:
        body = _without_none(
            {
                "credential": _credential_body(credential),
                "currentSessionToken": current_session_token,
            }
        )
        response = await self._call("POST", "/identity/signin", body=body)
        return parse_auth_payload(read_json(response))

    async def request_magic_link(self, email: str) -> None:
        await self._call("POST", "/identity/magic-link", body={"email": email})

    async def verify_magic_link(
        self, token: str, *, current_session_token: str | None = None
    ) -> AuthPayload:
        body = _without_none({"token": token, "currentSessionToken": current_session_token})
        response = await self._call("POST", "/identity/magic-link/verify", body=body)
        return parse_auth_payload(read_json(response))

    async def sign_out(self, token: str) -> None:
        await self._call("POST", "/identity/signout", token=token)

    async def begin_link(
        self,
        token: str,
        *,
        source_identity_id: UUID,
        credential: CredentialInput,
        idempotency_key: str,
        display_name: str | None = None,
    ) -> LinkStatus:
        body = _without_none(
            {
                "sourceIdentityId": str(source_identity_id),
                "targetCredential": _credential_body(credential),
                "idempotencyKey": idempotency_key,
                "displayName": display_name,
            }
        )
        response = await self._call("POST", "/identity/link/begin", body=body, token=token)
        return parse_link_status(read_json(response))

    async def commit_link(self, token: str, link_request_id: UUID) -> AuthPayload:
        body: dict[str, object] = {"linkRequestId": str(link_request_id)}
        response = await self._call(
            "POST", "/identity/link/commit", body=body, token=token
        )
        return parse_auth_payload(read_json(response))

    async def get_link_request(self, token: str, link_request_id: UUID) -> LinkStatus:
        response = await self._call("GET", f"/identity/link/{link_request_id}", token=token)
        return parse_link_status(read_json(response))


if TYPE_CHECKING:
    from anonlink.client.ports import AuthApi

    _api_check: AuthApi = HttpAuthApi()
