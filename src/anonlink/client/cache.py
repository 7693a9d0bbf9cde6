"""Per-client session cache with ordered, message-based change notification."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from anonlink.client.models import SessionChange, SessionSnapshot, SyncState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from anonlink.client.models import AuthPayload

log = getLogger(__name__)


class Subscription:
    """A subscriber's channel. Changes arrive in the order they were applied."""

    def __init__(self, cache: SessionCache) -> None:
        self._cache = cache
        self._queue: asyncio.Queue[SessionChange | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _publish(self, change: SessionChange) -> None:
        if not self._closed:
            self._queue.put_nowait(change)

    def _end(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def get(self) -> SessionChange | None:
        """Wait for the next change; ``None`` once the subscription or cache is closed."""

        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> list[SessionChange]:
        changes: list[SessionChange] = []
        while not self._queue.empty():
            change = self._queue.get_nowait()
            if change is not None:
                changes.append(change)
        return changes

    def close(self) -> None:
        self._cache.unsubscribe(self)
        self._end()

    def __aiter__(self) -> AsyncIterator[SessionChange]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SessionChange]:
        while True:
            change = await self.get()
            if change is None:
                return
            yield change


class SessionCache:
    """Holds the client's current ``(identity, session)`` pair.

    Every write carries an observation ticket from :meth:`next_ticket`; a write
    whose ticket is not newer than the last applied one is discarded, so a slow
    response can never roll the view back.
    """

    def __init__(self, *, token: str | None = None) -> None:
        self._snapshot = SessionSnapshot()
        self._state = SyncState.UNINITIALIZED
        self._token = token
        self._issued = 0
        self._applied = 0
        self._subscribers: list[Subscription] = []
        self._closed = False
        self.last_error: Exception | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def applied_observation(self) -> int:
        return self._applied

    def next_ticket(self) -> int:
        self._issued += 1
        return self._issued

    def begin_sync(self) -> None:
        if not self._closed:
            self._state = SyncState.SYNCING

    def apply(self, payload: AuthPayload | None, *, ticket: int, reason: str) -> bool:
        """Swap in a new snapshot if ``ticket`` is newer than what is applied."""

        if self._closed:
            return False
        if ticket <= self._applied:
            log.debug(
                "Discarding %s result (observation %s <= %s)", reason, ticket, self._applied
            )
            self._settle()
            return False

        previous = self._snapshot
        current = SessionSnapshot.from_payload(payload, observation=ticket)
        self._snapshot = current
        self._token = current.session.token if current.session is not None else None
        self._applied = ticket
        self._state = SyncState.READY
        self.last_error = None

        change = SessionChange(previous=previous, current=current, reason=reason)
        if change.identity_changed:
            log.info("Session identity changed (%s)", reason)
        for subscriber in list(self._subscribers):
            subscriber._publish(change)  # noqa: SLF001
        return True

    def fail(self, error: Exception, *, ticket: int) -> None:
        """Record a failed reconciliation; the applied snapshot stays in place."""

        if self._closed or ticket <= self._applied:
            self._settle()
            return
        self.last_error = error
        self._state = SyncState.STALE

    def _settle(self) -> None:
        if self._state is SyncState.SYNCING:
            self._state = SyncState.READY if self._applied else SyncState.UNINITIALIZED

    def cancel_sync(self) -> None:
        self._settle()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        if self._closed:
            subscription._end()  # noqa: SLF001
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def close(self) -> None:
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            subscriber._end()  # noqa: SLF001
