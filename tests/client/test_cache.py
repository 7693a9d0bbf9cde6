from __future__ import annotations

import asyncio

from anonlink.client import SessionCache, SyncState
from anonlink.client.errors import AuthApiError
from anonlink.domain.model import IdentityKind
from tests.helpers.fakes import make_payload


def test_newer_observation_replaces_snapshot_and_token() -> None:
    cache = SessionCache()
    anonymous = make_payload()
    permanent = make_payload(kind=IdentityKind.PERMANENT, email="ada@example.com")

    assert cache.state is SyncState.UNINITIALIZED
    assert cache.apply(anonymous, ticket=cache.next_ticket(), reason="anonymous")
    assert cache.apply(permanent, ticket=cache.next_ticket(), reason="sign_in")

    assert cache.state is SyncState.READY
    assert cache.snapshot.identity == permanent.identity
    assert cache.snapshot.session == permanent.session
    assert cache.token == permanent.session.token
    assert cache.applied_observation == 2


def test_older_observation_is_discarded() -> None:
    cache = SessionCache()
    stale_ticket = cache.next_ticket()
    fresh_ticket = cache.next_ticket()
    fresh = make_payload(kind=IdentityKind.PERMANENT)

    cache.apply(fresh, ticket=fresh_ticket, reason="sign_in")
    applied = cache.apply(make_payload(), ticket=stale_ticket, reason="reconcile")

    assert not applied
    assert cache.snapshot.identity == fresh.identity
    assert cache.applied_observation == fresh_ticket


def test_signed_out_payload_clears_identity_and_session_together() -> None:
    cache = SessionCache()
    cache.apply(make_payload(), ticket=cache.next_ticket(), reason="anonymous")

    cache.apply(None, ticket=cache.next_ticket(), reason="sign_out")

    assert not cache.snapshot.is_signed_in
    assert cache.snapshot.identity is None
    assert cache.snapshot.session is None
    assert cache.token is None


def test_failure_marks_stale_but_keeps_snapshot() -> None:
    cache = SessionCache()
    payload = make_payload()
    cache.apply(payload, ticket=cache.next_ticket(), reason="anonymous")
    error = AuthApiError("offline", code="network_error", retryable=True)

    cache.begin_sync()
    cache.fail(error, ticket=cache.next_ticket())

    assert cache.state is SyncState.STALE
    assert cache.last_error is error
    assert cache.snapshot.identity == payload.identity

    cache.apply(payload, ticket=cache.next_ticket(), reason="reconcile")
    assert cache.state is SyncState.READY
    assert cache.last_error is None


def test_subscribers_see_changes_in_apply_order() -> None:
    cache = SessionCache()
    subscription = cache.subscribe()
    first = make_payload()
    second = make_payload(kind=IdentityKind.PERMANENT)

    cache.apply(first, ticket=cache.next_ticket(), reason="anonymous")
    cache.apply(second, ticket=cache.next_ticket(), reason="link")
    cache.apply(make_payload(), ticket=1, reason="reconcile")

    changes = subscription.drain()
    assert [change.reason for change in changes] == ["anonymous", "link"]
    assert changes[0].previous.identity is None
    assert changes[1].previous.identity == first.identity
    assert changes[1].current.identity == second.identity
    assert all(change.identity_changed for change in changes)


def test_closed_subscription_stops_receiving() -> None:
    cache = SessionCache()
    subscription = cache.subscribe()

    subscription.close()
    cache.apply(make_payload(), ticket=cache.next_ticket(), reason="anonymous")

    assert subscription.closed
    assert subscription.drain() == []


def test_closing_cache_ends_subscriptions_and_ignores_writes() -> None:
    async def scenario() -> None:
        cache = SessionCache()
        subscription = cache.subscribe()
        cache.apply(make_payload(), ticket=cache.next_ticket(), reason="anonymous")

        cache.close()

        assert not cache.apply(make_payload(), ticket=cache.next_ticket(), reason="late")
        received = [change.reason async for change in subscription]
        assert received == ["anonymous"]
        assert await cache.subscribe().get() is None

    asyncio.run(scenario())
