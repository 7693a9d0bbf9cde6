"""Server-side entry point for every authentication flow.

The orchestrator decides which flow an inbound request needs and issues or
revokes sessions. Sign-up, sign-in and magic-link verification made while the
caller still holds a live anonymous session are routed through the
:class:`~anonlink.domain.linking.LinkingCoordinator` so the anonymous data
follows the user instead of being orphaned next to a second identity.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import uuid4

from anonlink.domain.credentials import normalize_email
from anonlink.domain.errors import (
    CredentialConflictError,
    InvalidCredentialsError,
    LinkInFlightError,
    LinkRequestNotFoundError,
    SessionExpiredError,
    UniqueViolationError,
    ValidationError,
)
from anonlink.domain.linking import CREDENTIAL_CONSTRAINT
from anonlink.domain.model import (
    Credential,
    CredentialKind,
    Identity,
    LinkState,
    MagicLinkToken,
    Session,
    utcnow,
)
from anonlink.domain.names import generate_display_name
from anonlink.domain.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from anonlink.domain.credentials import CredentialInput
    from anonlink.domain.linking import LinkingCoordinator
    from anonlink.domain.model import LinkRequest
    from anonlink.domain.ports.credentials import CredentialHasher, MagicLinkSender
    from anonlink.domain.ports.unit_of_work import IdentityRepositories, IdentityUnitOfWork

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthResult:
    identity: Identity
    session: Session
    link_request_id: UUID | None = None

    @property
    def linked(self) -> bool:
        return self.link_request_id is not None


class AuthFlowOrchestrator:
    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], IdentityUnitOfWork],
        coordinator: LinkingCoordinator,
        hasher: CredentialHasher,
        magic_link_sender: MagicLinkSender,
        session_ttl: timedelta = timedelta(days=30),
        session_update_age: timedelta = timedelta(days=1),
        magic_link_ttl: timedelta = timedelta(minutes=5),
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        name_generator: Callable[[], str] = generate_display_name,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._coordinator = coordinator
        self._hasher = hasher
        self._sender = magic_link_sender
        self._session_ttl = session_ttl
        self._session_update_age = session_update_age
        self._magic_link_ttl = magic_link_ttl
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._name_generator = name_generator

    def _with_retry[T](self, operation: Callable[[], T], label: str) -> T:
        return call_with_retry(operation, policy=self._retry, label=label, sleep=self._sleep)

    # Anonymous ---------------------------------------------------------------

    def create_anonymous(self, *, display_name: str | None = None) -> AuthResult:
        name = display_name or self._name_generator()
        return self._with_retry(lambda: self._create_anonymous_once(name), "create_anonymous")

    def _create_anonymous_once(self, display_name: str) -> AuthResult:
        now = self._clock()
        with self._uow_factory() as uow:
            identity = Identity.anonymous(display_name=display_name)
            identity.created_at = now
            identity.updated_at = now
            uow.repositories.identities.add(identity)
            uow.flush()
            session = self._issue_session(uow.repositories, identity, now)
            uow.commit()
        log.info("Created anonymous identity %s", identity.id)
        return AuthResult(identity=identity, session=session)

    # Credentialed ------------------------------------------------------------

    def sign_up(
        self,
        credential: CredentialInput,
        *,
        display_name: str | None = None,
        current_session_token: str | None = None,
        idempotency_key: str | None = None,
    ) -> AuthResult:
        """Create a permanent identity, or link the caller's anonymous one into it."""

        replayed = self._replay_link(
            idempotency_key,
            email=credential.normalized_email(),
            current_session_token=current_session_token,
            password=credential.password,
        )
        if replayed is not None:
            return replayed

        target = credential.to_credential(self._hasher)
        source = self._anonymous_source(current_session_token)
        if source is not None:
            return self._link(
                source,
                target,
                idempotency_key or f"signup:{uuid4().hex}",
                display_name=display_name,
            )
        return self._with_retry(
            lambda: self._create_permanent_once(target, display_name),
            "sign_up",
        )

    def _create_permanent_once(self, credential: Credential, display_name: str | None) -> AuthResult:
        now = self._clock()
        try:
            with self._uow_factory() as uow:
                repos = uow.repositories
                if repos.identities.get_by_email(credential.email) is not None:
                    raise CredentialConflictError(credential.email)
                identity = Identity.permanent(
                    credential=credential,
                    display_name=display_name or self._name_generator(),
                )
                identity.created_at = now
                identity.updated_at = now
                repos.identities.add(identity)
                uow.flush()
                session = self._issue_session(repos, identity, now)
                uow.commit()
        except UniqueViolationError as exc:
            if exc.constraint != CREDENTIAL_CONSTRAINT:
                raise
            raise CredentialConflictError(credential.email) from exc
        log.info("Created permanent identity %s", identity.id)
        return AuthResult(identity=identity, session=session)

    def sign_in(
        self,
        credential: CredentialInput,
        *,
        current_session_token: str | None = None,
        idempotency_key: str | None = None,
    ) -> AuthResult:
        """Verify a password credential and open a session.

        With a live anonymous session the anonymous data is merged into the
        verified identity before the session is issued.
        """

        email = credential.normalized_email()
        password = credential.password
        if password is None:
            raise InvalidCredentialsError

        with self._uow_factory() as uow:
            identity = uow.repositories.identities.get_by_email(email)
        stored = identity.credential if identity is not None else None
        if (
            identity is None
            or stored is None
            or stored.kind is not CredentialKind.PASSWORD
            or stored.secret_hash is None
            or not self._hasher.verify(password, stored.secret_hash)
        ):
            log.info("Rejected sign-in attempt")
            raise InvalidCredentialsError

        replayed = self._replay_link(
            idempotency_key,
            email=email,
            current_session_token=current_session_token,
            password=password,
        )
        if replayed is not None:
            return replayed

        return self._sign_in_verified(identity, current_session_token, idempotency_key, "signin")

    def _sign_in_verified(
        self,
        identity: Identity,
        current_session_token: str | None,
        idempotency_key: str | None,
        prefix: str,
    ) -> AuthResult:
        credential = identity.credential
        source = self._anonymous_source(current_session_token)
        if source is not None and credential is not None:
            return self._link(
                source,
                credential,
                idempotency_key or f"{prefix}:{uuid4().hex}",
                merge_into_id=identity.id,
            )
        return self._with_retry(lambda: self._open_session_once(identity.id), "sign_in")

    def _open_session_once(self, identity_id: UUID) -> AuthResult:
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            identity = repos.identities.get(identity_id)
            if identity is None or identity.is_archived:
                raise InvalidCredentialsError
            session = self._issue_session(repos, identity, now)
            uow.commit()
        return AuthResult(identity=identity, session=session)

    # Sessions ----------------------------------------------------------------

    def get_session(self, token: str) -> AuthResult:
        """Resolve a bearer token, following link re-pointing and sliding the expiry."""

        return self._with_retry(lambda: self._get_session_once(token), "get_session")

    def _get_session_once(self, token: str) -> AuthResult:
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            session = _resolve_session(repos, token, now)
            if session is None:
                raise SessionExpiredError
            identity = repos.identities.get(session.identity_id)
            if identity is None or identity.is_archived:
                raise SessionExpiredError
            if session.extend_if_due(
                now, ttl=self._session_ttl, update_age=self._session_update_age
            ):
                uow.commit()
        return AuthResult(identity=identity, session=session)

    def sign_out(self, token: str) -> None:
        self._with_retry(lambda: self._sign_out_once(token), "sign_out")

    def _sign_out_once(self, token: str) -> None:
        now = self._clock()
        with self._uow_factory() as uow:
            session = _resolve_session(uow.repositories, token, now)
            if session is None:
                return
            session.revoke(now)
            uow.commit()
        log.info("Signed out session %s", session.id)

    def _issue_session(self, repos: IdentityRepositories, identity: Identity, now: datetime) -> Session:
        session = Session.issue(identity_id=identity.id, now=now, ttl=self._session_ttl)
        repos.sessions.add(session)
        return session

    def _anonymous_source(self, token: str | None) -> Identity | None:
        if not token:
            return None
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            session = _resolve_session(repos, token, now)
            if session is None:
                return None
            identity = repos.identities.get(session.identity_id)
        if identity is None or not identity.is_anonymous or identity.is_archived:
            return None
        return identity

    # Linking -----------------------------------------------------------------

    def begin_link(
        self,
        token: str,
        source_identity_id: UUID,
        credential: CredentialInput,
        idempotency_key: str,
        *,
        display_name: str | None = None,
    ) -> LinkRequest:
        """Start an explicit link; the bearer session must belong to ``source_identity_id``."""

        current = self.get_session(token)
        if current.identity.id != source_identity_id:
            raise ValidationError(
                f"Session does not own identity {source_identity_id}",
                user_message="You can only upgrade your own account.",
            )
        return self._coordinator.begin_link(
            source_identity_id,
            credential.to_credential(self._hasher),
            idempotency_key,
            display_name=display_name,
        )

    def commit_link(self, token: str, link_request_id: UUID) -> AuthResult:
        """Commit (or replay) a link on behalf of the bearer session."""

        self._authorize_link(token, link_request_id)
        return self._commit(link_request_id)

    def get_link_request(self, token: str, link_request_id: UUID) -> LinkRequest:
        return self._authorize_link(token, link_request_id)

    def _authorize_link(self, token: str, link_request_id: UUID) -> LinkRequest:
        # the source token keeps working after commit because it resolves through the repoint
        current = self.get_session(token)
        request = self._coordinator.get_link_request(link_request_id)
        if current.identity.id not in {request.source_identity_id, request.result_identity_id}:
            log.info("Session of identity %s denied link %s", current.identity.id, request.id)
            raise LinkRequestNotFoundError(link_request_id)
        return request

    def _commit(self, link_request_id: UUID) -> AuthResult:
        result = self._coordinator.commit_link(link_request_id)
        return AuthResult(
            identity=result.identity,
            session=result.session,
            link_request_id=result.link_request_id,
        )

    def _replay_link(
        self,
        idempotency_key: str | None,
        *,
        email: str,
        current_session_token: str | None,
        password: str | None = None,
    ) -> AuthResult | None:
        """A retried sign-up or sign-in resumes (or replays) the link its key started.

        The retry must name the same email, come from a session on the linked
        identity (the anonymous one, or its successor once committed) and, when
        ``password`` is given, match the password the link was started with.
        """

        if idempotency_key is None or not idempotency_key.strip():
            return None
        now = self._clock()
        with self._uow_factory() as uow:
            repos = uow.repositories
            request = repos.link_requests.get_by_idempotency_key(idempotency_key.strip())
            if request is None:
                return None
            session = (
                _resolve_session(repos, current_session_token, now)
                if current_session_token is not None
                else None
            )
        target = request.target_credential
        linked = {request.source_identity_id, request.result_identity_id}
        if target.email != email or session is None or session.identity_id not in linked:
            log.warning("Idempotency key of link request %s reused by another caller", request.id)
            raise ValidationError(
                "Idempotency key already used for a different request",
                user_message="This request was already used for another account.",
            )
        if target.secret_hash is not None and (
            password is None or not self._hasher.verify(password, target.secret_hash)
        ):
            log.info("Rejected replay of link request %s", request.id)
            raise InvalidCredentialsError
        log.info("Replaying link request %s for a retried request", request.id)
        return self._commit(request.id)

    def _link(
        self,
        source: Identity,
        credential: Credential,
        idempotency_key: str,
        *,
        display_name: str | None = None,
        merge_into_id: UUID | None = None,
    ) -> AuthResult:
        request = self._coordinator.begin_link(
            source.id,
            credential,
            idempotency_key,
            display_name=display_name,
            merge_into_id=merge_into_id,
        )
        if request.state is LinkState.CONFLICT:
            raise LinkInFlightError(source.id)
        log.info("Routing authentication for identity %s through link %s", source.id, request.id)
        return self._commit(request.id)

    # Magic links -------------------------------------------------------------

    def request_magic_link(self, email: str) -> None:
        """Issue a single-use sign-in token and hand it to the configured sender."""

        address = normalize_email(email)
        magic_link = self._with_retry(lambda: self._store_magic_link(address), "request_magic_link")
        self._sender.send(email=address, token=magic_link.token)

    def _store_magic_link(self, email: str) -> MagicLinkToken:
        now = self._clock()
        with self._uow_factory() as uow:
            magic_link = MagicLinkToken.issue(email=email, now=now, ttl=self._magic_link_ttl)
            uow.repositories.magic_links.add(magic_link)
            uow.commit()
        return magic_link

    def verify_magic_link(
        self,
        token: str,
        *,
        current_session_token: str | None = None,
        display_name: str | None = None,
    ) -> AuthResult:
        """Consume a magic link and sign in, sign up, or link accordingly."""

        email = self._with_retry(lambda: self._consume_magic_link(token), "verify_magic_link")
        with self._uow_factory() as uow:
            existing = uow.repositories.identities.get_by_email(email)
        if existing is not None:
            return self._sign_in_verified(existing, current_session_token, None, "magic-link")

        credential = Credential(kind=CredentialKind.MAGIC_LINK, email=email)
        source = self._anonymous_source(current_session_token)
        if source is not None:
            return self._link(
                source,
                credential,
                f"magic-link:{uuid4().hex}",
                display_name=display_name,
            )
        return self._with_retry(
            lambda: self._create_permanent_once(credential, display_name),
            "verify_magic_link",
        )

    def _consume_magic_link(self, token: str) -> str:
        now = self._clock()
        with self._uow_factory() as uow:
            magic_link = uow.repositories.magic_links.get(token)
            if magic_link is None or not magic_link.is_usable(now):
                raise InvalidCredentialsError
            magic_link.consume(now)
            uow.commit()
        return magic_link.email


def _resolve_session(repos: IdentityRepositories, token: str, now: datetime) -> Session | None:
    session = repos.sessions.get_by_token(token)
    if session is not None and session.is_live(now):
        return session
    repoint = repos.repoints.get_by_old_token(token)
    if repoint is None:
        return None
    successor = repos.sessions.get(repoint.new_session_id)
    if successor is None or not successor.is_live(now):
        return None
    return successor
