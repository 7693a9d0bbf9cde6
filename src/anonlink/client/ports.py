"""Port the synchronizer uses to talk to the auth service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from anonlink.client.models import AuthPayload, LinkStatus
    from anonlink.domain.credentials import CredentialInput


@runtime_checkable
class AuthApi(Protocol):
    async def create_anonymous(self) -> AuthPayload: ...

    async def get_session(self, token: str) -> AuthPayload | None:
        """Return ``None`` when the server no longer accepts ``token``."""
        ...

    async def sign_up(
        self,
        credential: CredentialInput,
        *,
        current_session_token: str | None = None,
        display_name: str | None = None,
    ) -> AuthPayload: ...

    async def sign_in(
        self,
        credential: CredentialInput,
        *,
        current_session_token: str | None = None,
    ) -> AuthPayload: ...

    async def request_magic_link(self, email: str) -> None: ...

    async def verify_magic_link(
        self, token: str, *, current_session_token: str | None = None
    ) -> AuthPayload: ...

    async def sign_out(self, token: str) -> None: ...

    async def begin_link(
        self,
        token: str,
        *,
        source_identity_id: UUID,
        credential: CredentialInput,
        idempotency_key: str,
        display_name: str | None = None,
    ) -> LinkStatus: ...

    async def commit_link(self, token: str, link_request_id: UUID) -> AuthPayload: ...

    async def get_link_request(self, token: str, link_request_id: UUID) -> LinkStatus: ...
