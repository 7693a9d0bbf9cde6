"""Errors raised to client code by the auth API and the synchronizer."""

from __future__ import annotations

from anonlink.domain.errors import ANONYMOUS_DATA_INTACT_MESSAGE


class AuthApiError(Exception):
    """A failed call to the auth service.

    ``code`` mirrors the server's error code; ``status`` is ``None`` when no
    response was received.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: int | None = None,
        retryable: bool = False,
        anonymous_data_intact: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.retryable = retryable
        self.anonymous_data_intact = anonymous_data_intact


class LinkTimeoutError(AuthApiError):
    """The link did not finish in time; the server's lease decides whether it still commits."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Account upgrade did not finish within {timeout_seconds:.0f}s. "
            + ANONYMOUS_DATA_INTACT_MESSAGE,
            code="link_timeout",
            retryable=True,
            anonymous_data_intact=True,
        )
        self.timeout_seconds = timeout_seconds
