"""Error taxonomy shared by the linking coordinator, the auth flows and the HTTP surface."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from uuid import UUID

ANONYMOUS_DATA_INTACT_MESSAGE = "Your existing data is intact and still available."


class AnonlinkError(Exception):
    """Base class for every domain-level failure.

    ``code`` is stable and machine readable, ``user_message`` is safe to show to an
    end user. ``attempts`` is filled in by the retry helper when the error escaped
    a bounded retry loop.
    """

    code: ClassVar[str] = "error"
    retryable: ClassVar[bool] = False
    anonymous_data_intact: ClassVar[bool | None] = None

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or message
        self.attempts = 1


class ValidationError(AnonlinkError):
    """Malformed or unacceptable input. Never retried."""

    code = "validation_error"


class IdentityNotFoundError(ValidationError):
    code = "identity_not_found"

    def __init__(self, identity_id: UUID) -> None:
        super().__init__(f"Identity {identity_id} does not exist", user_message="Unknown account.")
        self.identity_id = identity_id


class LinkRequestNotFoundError(ValidationError):
    code = "link_request_not_found"

    def __init__(self, link_request_id: UUID) -> None:
        super().__init__(
            f"Link request {link_request_id} does not exist",
            user_message="Unknown account upgrade request.",
        )
        self.link_request_id = link_request_id


class InvalidCredentialsError(ValidationError):
    code = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__("Credential verification failed", user_message="Invalid email or password.")


class NotAnonymousError(ValidationError):
    code = "not_anonymous"

    def __init__(self, identity_id: UUID) -> None:
        super().__init__(
            f"Identity {identity_id} is not an unlinked anonymous identity",
            user_message="This account is already permanent.",
        )
        self.identity_id = identity_id


class ConflictError(AnonlinkError):
    """The request is well formed but collides with existing state. Not retried automatically."""

    code = "conflict"
    anonymous_data_intact = True


class CredentialConflictError(ConflictError):
    code = "credential_conflict"

    def __init__(self, email: str) -> None:
        super().__init__(
            f"Credential for {email} is already bound to another identity",
            user_message="An account with this email already exists. "
            + ANONYMOUS_DATA_INTACT_MESSAGE,
        )
        self.email = email


class LinkInFlightError(ConflictError):
    code = "link_in_flight"

    def __init__(self, source_identity_id: UUID) -> None:
        super().__init__(
            f"Another link is already in flight for identity {source_identity_id}",
            user_message="An account upgrade is already in progress. "
            + ANONYMOUS_DATA_INTACT_MESSAGE,
        )
        self.source_identity_id = source_identity_id


class TransientError(AnonlinkError):
    """Safe to retry with backoff."""

    retryable = True


class LeaseContentionError(TransientError):
    code = "lease_contention"


class StoreUnavailableError(TransientError):
    code = "store_unavailable"

    def __init__(self, message: str = "Identity store is unavailable") -> None:
        super().__init__(message, user_message="The service is temporarily unavailable.")


class MigrationFailureError(AnonlinkError):
    """The link transaction was rolled back. The anonymous identity is untouched."""

    code = "migration_failure"
    anonymous_data_intact = True

    def __init__(self, link_request_id: UUID, reason: str) -> None:
        super().__init__(
            f"Link request {link_request_id} failed: {reason}",
            user_message="Your account could not be upgraded. " + ANONYMOUS_DATA_INTACT_MESSAGE,
        )
        self.link_request_id = link_request_id
        self.reason = reason


class SessionExpiredError(AnonlinkError):
    """The presented session is unknown, revoked or expired; the client must re-authenticate."""

    code = "session_expired"

    def __init__(self) -> None:
        super().__init__("Session is not valid", user_message="Please sign in again.")


class UniqueViolationError(AnonlinkError):
    """Raised by store adapters when a write collides with a unique constraint.

    ``constraint`` names the logical key (``credential_email``, ``idempotency_key``, ...)
    so callers can decide whether the collision is a conflict or an idempotent replay.
    """

    code = "unique_violation"

    def __init__(self, constraint: str | None) -> None:
        super().__init__(f"Unique constraint violated: {constraint or 'unknown'}")
        self.constraint = constraint
