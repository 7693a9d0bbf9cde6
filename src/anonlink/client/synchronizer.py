"""Keeps a :class:`SessionCache` convergent with the auth service.

Two channels feed the cache: a polling task calling :meth:`SessionSynchronizer.refresh`
at a fixed interval, and the local actions (sign-in, sign-out, link, ...) which
apply their own result as soon as it arrives. Reconciliation is single-flight:
a refresh requested while another is running joins it instead of issuing a
second request.
"""

from __future__ import annotations

import asyncio
import contextlib
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import uuid4

from anonlink.client.cache import SessionCache
from anonlink.client.errors import AuthApiError, LinkTimeoutError
from anonlink.domain.model.enums import LinkState

if TYPE_CHECKING:
    from anonlink.client.models import AuthPayload, SessionSnapshot
    from anonlink.client.ports import AuthApi
    from anonlink.domain.credentials import CredentialInput

log = getLogger(__name__)


class SessionSynchronizer:
    def __init__(
        self,
        api: AuthApi,
        *,
        cache: SessionCache | None = None,
        poll_interval: float = 300.0,
        link_timeout: float = 15.0,
    ) -> None:
        self._api = api
        self.cache = cache or SessionCache()
        self.poll_interval = poll_interval
        self.link_timeout = link_timeout
        self._inflight: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # Reconciliation ----------------------------------------------------------

    async def refresh(self) -> SessionSnapshot:
        """Reconcile with the server, joining a reconciliation already in flight.

        Failures are kept in ``cache.last_error`` rather than raised, so the
        polling loop keeps running through them.
        """

        if self._closed:
            return self.cache.snapshot
        task = self._inflight
        if task is None:
            task = asyncio.create_task(self._reconcile(), name="anonlink-reconcile")
            task.add_done_callback(self._reconcile_done)
            self._inflight = task
        await asyncio.shield(task)
        return self.cache.snapshot

    async def _reconcile(self) -> None:
        ticket = self.cache.next_ticket()
        token = self.cache.token
        self.cache.begin_sync()
        try:
            payload = await self._api.get_session(token) if token is not None else None
        except asyncio.CancelledError:
            self.cache.cancel_sync()
            raise
        except AuthApiError as exc:
            log.warning("Session reconciliation failed: %s (%s)", exc.code, exc)
            self.cache.fail(exc, ticket=ticket)
            return
        except Exception as exc:
            log.exception("Session reconciliation failed unexpectedly")
            self.cache.fail(exc, ticket=ticket)
            return
        if self._closed:
            return
        self.cache.apply(payload, ticket=ticket, reason="reconcile")

    def _reconcile_done(self, task: asyncio.Task[None]) -> None:
        if self._inflight is task:
            self._inflight = None

    def start(self) -> None:
        """Begin polling. The first reconciliation runs immediately."""

        if self._closed:
            raise RuntimeError("SessionSynchronizer is closed")
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(), name="anonlink-poll")

    async def _poll_loop(self) -> None:
        while not self._closed:
            await self.refresh()
            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        """Stop polling and abort any reconciliation; nothing is applied afterwards."""

        if self._closed:
            return
        self._closed = True
        self.cache.close()
        tasks = [task for task in (self._poll_task, self._inflight) if task is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._poll_task = None
        self._inflight = None

    async def __aenter__(self) -> SessionSynchronizer:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # Local actions -----------------------------------------------------------

    def _apply_local(self, payload: AuthPayload | None, reason: str) -> SessionSnapshot:
        # ticket taken after the call returned, so it outranks any reconcile started earlier
        ticket = self.cache.next_ticket()
        self.cache.apply(payload, ticket=ticket, reason=reason)
        return self.cache.snapshot

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("SessionSynchronizer is closed")

    async def sign_in_anonymously(self) -> SessionSnapshot:
        self._ensure_open()
        payload = await self._api.create_anonymous()
        return self._apply_local(payload, "anonymous")

    async def sign_up(
        self, credential: CredentialInput, *, display_name: str | None = None
    ) -> SessionSnapshot:
        self._ensure_open()
        payload = await self._api.sign_up(
            credential,
            current_session_token=self.cache.token,
            display_name=display_name,
        )
        return self._apply_local(payload, "sign_up")

    async def sign_in(self, credential: CredentialInput) -> SessionSnapshot:
        self._ensure_open()
        payload = await self._api.sign_in(credential, current_session_token=self.cache.token)
        return self._apply_local(payload, "sign_in")

    async def request_magic_link(self, email: str) -> None:
        self._ensure_open()
        await self._api.request_magic_link(email)

    async def verify_magic_link(self, token: str) -> SessionSnapshot:
        self._ensure_open()
        payload = await self._api.verify_magic_link(
            token, current_session_token=self.cache.token
        )
        return self._apply_local(payload, "magic_link")

    async def sign_out(self) -> SessionSnapshot:
        self._ensure_open()
        token = self.cache.token
        if token is not None:
            await self._api.sign_out(token)
        return self._apply_local(None, "sign_out")

    async def link(
        self,
        credential: CredentialInput,
        *,
        display_name: str | None = None,
        idempotency_key: str | None = None,
    ) -> SessionSnapshot:
        """Upgrade the current anonymous identity, bounded by ``link_timeout``."""

        self._ensure_open()
        snapshot = self.cache.snapshot
        token = self.cache.token
        if snapshot.identity is None or token is None or not snapshot.identity.is_anonymous:
            raise AuthApiError("Only an anonymous session can be upgraded", code="not_anonymous")

        key = idempotency_key or uuid4().hex
        try:
            async with asyncio.timeout(self.link_timeout):
                status = await self._api.begin_link(
                    token,
                    source_identity_id=snapshot.identity.id,
                    credential=credential,
                    idempotency_key=key,
                    display_name=display_name,
                )
                if status.state is LinkState.CONFLICT:
                    raise AuthApiError(
                        "An account upgrade is already in progress",
                        code="link_in_flight",
                        status=409,
                        anonymous_data_intact=True,
                    )
                payload = await self._api.commit_link(token, status.id)
        except TimeoutError as exc:
            log.warning("Link for identity %s timed out", snapshot.identity.id)
            raise LinkTimeoutError(self.link_timeout) from exc
        return self._apply_local(payload, "link")
