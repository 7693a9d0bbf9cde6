"""Anonymous-to-permanent identity linking.

The coordinator drives a :class:`~anonlink.domain.model.LinkRequest` through
``pending -> migrating -> committed | failed | conflict``.

* ``begin_link`` claims a lease on the anonymous identity with a conditional write.
  A second attempt while the lease is live gets a ``conflict`` answer straight away.
* ``commit_link`` performs the migration in one transaction: create (or load) the
  permanent identity, move owned resources, issue sessions and re-pointing
  records, retire the anonymous row and mark the request committed. Any failure
  rolls the whole transaction back, then the request is marked failed and the
  lease released in a separate, short transaction. Every commit-path transaction
  starts by locking the request row, so concurrent commits of one request run in
  turn and the later ones replay the committed result.
* Leases expire. A later ``begin_link`` (or :meth:`reclaim_expired_leases`) takes
  over an expired lease only after re-checking the request it belonged to.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Final

from anonlink.domain.errors import (
    CredentialConflictError,
    IdentityNotFoundError,
    LeaseContentionError,
    LinkRequestNotFoundError,
    MigrationFailureError,
    NotAnonymousError,
    SessionExpiredError,
    TransientError,
    UniqueViolationError,
    ValidationError,
)
from anonlink.domain.model import (
    Identity,
    LinkRequest,
    LinkState,
    RetentionPolicy,
    Session,
    SessionRepoint,
    utcnow,
)
from anonlink.domain.ports.migration import OwnedResourceMigrator
from anonlink.domain.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from anonlink.domain.model import Credential
    from anonlink.domain.ports.migration import ResourceMigrator
    from anonlink.domain.ports.unit_of_work import IdentityRepositories, IdentityUnitOfWork

log = getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH: Final[int] = 200
CREDENTIAL_CONSTRAINT: Final[str] = "credential_email"
IDEMPOTENCY_CONSTRAINT: Final[str] = "idempotency_key"


@dataclass(frozen=True, slots=True)
class LinkResult:
    """Outcome of a committed link: the permanent identity and its fresh session."""

    link_request_id: UUID
    identity: Identity
    session: Session


class LinkingCoordinator:
    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], IdentityUnitOfWork],
        resource_migrator: ResourceMigrator | None = None,
        lease_ttl: timedelta = timedelta(seconds=30),
        session_ttl: timedelta = timedelta(days=30),
        retention: RetentionPolicy = RetentionPolicy.DELETE,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._migrator = resource_migrator or OwnedResourceMigrator()
        self._lease_ttl = lease_ttl
        self._session_ttl = session_ttl
        self._retention = retention
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep

    @property
    def retention(self) -> RetentionPolicy:
        return self._retention

    # Begin -------------------------------------------------------------------

    def begin_link(
        self,
        source_identity_id: UUID,
        target_credential: Credential,
        idempotency_key: str,
        *,
        display_name: str | None = None,
        merge_into_id: UUID | None = None,
    ) -> LinkRequest:
        """Claim the anonymous identity and record a pending link request.

        Returns the existing request when ``idempotency_key`` was seen before, and a
        transient request in state ``conflict`` when another link holds the lease.
        """

        key = idempotency_key.strip()
        if not key or len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError("Idempotency key must be 1-200 characters")

        return call_with_retry(
            lambda: self._begin_once(
                source_identity_id,
                target_credential,
                key,
                display_name=display_name,
                merge_into_id=merge_into_id,
            ),
            policy=self._retry,
            label="begin_link",
            sleep=self._sleep,
        )

    def _begin_once(
        self,
        source_identity_id: UUID,
        target_credential: Credential,
        key: str,
        *,
        display_name: str | None,
        merge_into_id: UUID | None,
    ) -> LinkRequest:
        now = self._clock()
        try:
            with self._uow_factory() as uow:
                repos = uow.repositories
                existing = repos.link_requests.get_by_idempotency_key(key)
                if existing is not None:
                    return _replay_begin(existing, source_identity_id)

                source = repos.identities.get(source_identity_id)
                _ensure_linkable(source, source_identity_id)
                self._check_target(repos, target_credential, merge_into_id)

                request = LinkRequest.open(
                    idempotency_key=key,
                    source_identity_id=source_identity_id,
                    target_credential=target_credential,
                    display_name=display_name,
                    merge_into_id=merge_into_id,
                    now=now,
                )
                if source is not None and source.has_live_lease(now):
                    return _conflict(request, now)

                acquired = repos.identities.acquire_lease(
                    source_identity_id,
                    owner=request.id,
                    now=now,
                    expires_at=now + self._lease_ttl,
                )
                if not acquired:
                    # lost the race; the winner may have used the same key
                    existing = repos.link_requests.get_by_idempotency_key(key)
                    if existing is not None:
                        return _replay_begin(existing, source_identity_id)
                    return _conflict(request, now)

                for stale in repos.link_requests.list_in_flight(
                    source_identity_id=source_identity_id
                ):
                    stale.transition(LinkState.FAILED, now, reason="lease expired")
                    log.warning(
                        "Reclaimed expired lease on identity %s from link request %s",
                        source_identity_id,
                        stale.id,
                    )

                repos.link_requests.add(request)
                uow.commit()
        except UniqueViolationError as exc:
            if exc.constraint != IDEMPOTENCY_CONSTRAINT:
                raise
            with self._uow_factory() as uow:
                existing = uow.repositories.link_requests.get_by_idempotency_key(key)
            if existing is None:
                raise LeaseContentionError("Idempotency key insert raced and vanished") from exc
            return _replay_begin(existing, source_identity_id)

        log.info(
            "Link request %s opened for identity %s (lease until %s)",
            request.id,
            source_identity_id,
            now + self._lease_ttl,
        )
        return request

    @staticmethod
    def _check_target(
        repos: IdentityRepositories,
        target_credential: Credential,
        merge_into_id: UUID | None,
    ) -> None:
        if merge_into_id is None:
            if repos.identities.get_by_email(target_credential.email) is not None:
                raise CredentialConflictError(target_credential.email)
            return
        target = repos.identities.get(merge_into_id)
        if target is None:
            raise IdentityNotFoundError(merge_into_id)
        if target.is_anonymous or target.is_archived:
            raise ValidationError(f"Identity {merge_into_id} cannot receive linked data")

    # Commit ------------------------------------------------------------------

    def commit_link(self, link_request_id: UUID) -> LinkResult:
        """Run the migration for a pending request, or replay the committed result."""

        return call_with_retry(
            lambda: self._commit_once(link_request_id),
            policy=self._retry,
            label="commit_link",
            sleep=self._sleep,
        )

    def _commit_once(self, link_request_id: UUID) -> LinkResult:
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            request = repos.link_requests.get_for_update(link_request_id)
            if request is None:
                raise LinkRequestNotFoundError(link_request_id)
            match request.state:
                case LinkState.COMMITTED:
                    return _replay_commit(repos, request)
                case LinkState.FAILED:
                    raise MigrationFailureError(request.id, request.failure_reason or "failed")
                case LinkState.CONFLICT:
                    raise CredentialConflictError(request.target_credential.email)
                case LinkState.PENDING | LinkState.MIGRATING:
                    pass

            renewed = repos.identities.renew_lease(
                request.source_identity_id,
                owner=request.id,
                now=now,
                expires_at=now + self._lease_ttl,
            )
            if not renewed:
                request.transition(LinkState.FAILED, now, reason="lease lost")
                uow.commit()
                log.warning("Link request %s lost its lease before commit", request.id)
                raise MigrationFailureError(request.id, "lease lost")

            request.transition(LinkState.MIGRATING, now)
            uow.commit()
            source_identity_id = request.source_identity_id
            email = request.target_credential.email

        try:
            result = self._migrate(link_request_id, now)
        except TransientError:
            raise
        except UniqueViolationError as exc:
            if exc.constraint != CREDENTIAL_CONSTRAINT:
                replay = self._finish_unsuccessful(
                    link_request_id, source_identity_id, LinkState.FAILED, str(exc)
                )
                if replay is not None:
                    return replay
                raise MigrationFailureError(link_request_id, str(exc)) from exc
            replay = self._finish_unsuccessful(
                link_request_id,
                source_identity_id,
                LinkState.CONFLICT,
                "credential already bound",
            )
            if replay is not None:
                return replay
            raise CredentialConflictError(email) from exc
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            replay = self._finish_unsuccessful(
                link_request_id, source_identity_id, LinkState.FAILED, reason
            )
            if replay is not None:
                return replay
            raise MigrationFailureError(link_request_id, reason) from exc

        log.info(
            "Link request %s committed: identity %s -> %s",
            link_request_id,
            source_identity_id,
            result.identity.id,
        )
        return result

    def _migrate(self, link_request_id: UUID, now: datetime) -> LinkResult:
        with self._uow_factory() as uow:
            repos = uow.repositories
            request = repos.link_requests.get_for_update(link_request_id)
            if request is not None and request.state is LinkState.COMMITTED:
                # a concurrent commit of the same request finished first
                return _replay_commit(repos, request)
            if request is None or request.state is not LinkState.MIGRATING:
                raise LeaseContentionError(f"Link request {link_request_id} changed concurrently")
            source = repos.identities.get(request.source_identity_id)
            if source is None or source.lease_owner != request.id:
                raise LeaseContentionError(f"Link request {link_request_id} no longer holds its lease")

            target = self._resolve_target(repos, request, source, now)
            uow.flush()

            moved = self._migrator.migrate(uow, source_id=source.id, target_id=target.id)

            session = Session.issue(identity_id=target.id, now=now, ttl=self._session_ttl)
            repos.sessions.add(session)
            repointed = self._repoint_sessions(repos, source, target, request, now)
            self._retire_source(repos, source, now)

            request.mark_committed(identity_id=target.id, session_id=session.id, now=now)
            uow.commit()

        log.info(
            "Migrated %s resources and %s sessions for link request %s",
            moved,
            repointed,
            link_request_id,
        )
        return LinkResult(link_request_id=link_request_id, identity=target, session=session)

    def _resolve_target(
        self,
        repos: IdentityRepositories,
        request: LinkRequest,
        source: Identity,
        now: datetime,
    ) -> Identity:
        if request.merge_into_id is not None:
            target = repos.identities.get(request.merge_into_id)
            if target is None or target.is_anonymous or target.is_archived:
                raise ValidationError(f"Merge target {request.merge_into_id} is not available")
            target.updated_at = now
            return target

        target = Identity.permanent(
            credential=request.target_credential,
            display_name=request.display_name or source.display_name,
            linked_from=source.id,
        )
        target.created_at = now
        target.updated_at = now
        repos.identities.add(target)
        return target

    def _repoint_sessions(
        self,
        repos: IdentityRepositories,
        source: Identity,
        target: Identity,
        request: LinkRequest,
        now: datetime,
    ) -> int:
        old_sessions = repos.sessions.list_live_for_identity(source.id, now=now)
        for old in old_sessions:
            successor = Session.issue(identity_id=target.id, now=now, ttl=self._session_ttl)
            repos.sessions.add(successor)
            repos.repoints.add(
                SessionRepoint(
                    old_token=old.token,
                    old_session_id=old.id,
                    new_session_id=successor.id,
                    link_request_id=request.id,
                    created_at=now,
                )
            )
            if self._retention is RetentionPolicy.ARCHIVE:
                old.revoke(now)
        return len(old_sessions)

    def _retire_source(self, repos: IdentityRepositories, source: Identity, now: datetime) -> None:
        match self._retention:
            case RetentionPolicy.DELETE:
                repos.sessions.remove_for_identity(source.id)
                repos.identities.remove(source)
            case RetentionPolicy.ARCHIVE:
                source.archive(now)

    def _finish_unsuccessful(
        self,
        link_request_id: UUID,
        source_identity_id: UUID,
        state: LinkState,
        reason: str,
    ) -> LinkResult | None:
        """Record the failure, unless a concurrent commit of the request already won.

        Returns the committed result in that case so the caller can replay it.
        """

        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            request = repos.link_requests.get_for_update(link_request_id)
            if request is not None and request.state is LinkState.COMMITTED:
                return _replay_commit(repos, request)
            if request is not None and request.state.is_in_flight:
                request.transition(state, now, reason=reason)
            repos.identities.release_lease(source_identity_id, owner=link_request_id)
            uow.commit()
        log.warning("Link request %s ended as %s: %s", link_request_id, state, reason)
        return None

    # Queries and maintenance -------------------------------------------------

    def get_link_request(self, link_request_id: UUID) -> LinkRequest:
        with self._uow_factory() as uow:
            request = uow.repositories.link_requests.get(link_request_id)
        if request is None:
            raise LinkRequestNotFoundError(link_request_id)
        return request

    def reclaim_expired_leases(self) -> int:
        """Fail every in-flight request whose lease has expired and free its identity."""

        now = self._clock()
        reclaimed = 0
        with self._uow_factory() as uow:
            repos = uow.repositories
            for request in repos.link_requests.list_in_flight():
                source = repos.identities.get(request.source_identity_id)
                if source is not None and source.lease_owner == request.id:
                    if source.has_live_lease(now):
                        continue
                    repos.identities.release_lease(source.id, owner=request.id)
                request.transition(LinkState.FAILED, now, reason="lease expired")
                reclaimed += 1
                log.warning("Abandoned link request %s after lease expiry", request.id)
            uow.commit()
        return reclaimed


def _ensure_linkable(source: Identity | None, source_identity_id: UUID) -> None:
    if source is None:
        raise IdentityNotFoundError(source_identity_id)
    if not source.is_anonymous or source.is_archived:
        raise NotAnonymousError(source_identity_id)


def _replay_begin(existing: LinkRequest, source_identity_id: UUID) -> LinkRequest:
    if existing.source_identity_id != source_identity_id:
        raise ValidationError(
            "Idempotency key already used for a different identity",
            user_message="This request was already used for another account.",
        )
    return existing


def _conflict(request: LinkRequest, now: datetime) -> LinkRequest:
    request.transition(LinkState.CONFLICT, now, reason="link already in flight")
    log.info(
        "Link attempt for identity %s rejected: another link is in flight",
        request.source_identity_id,
    )
    return request


def _replay_commit(repos: IdentityRepositories, request: LinkRequest) -> LinkResult:
    if request.result_identity_id is None or request.result_session_id is None:
        raise MigrationFailureError(request.id, "committed without a result")
    identity = repos.identities.get(request.result_identity_id)
    if identity is None:
        raise IdentityNotFoundError(request.result_identity_id)
    session = repos.sessions.get(request.result_session_id)
    if session is None:
        raise SessionExpiredError
    return LinkResult(link_request_id=request.id, identity=identity, session=session)
