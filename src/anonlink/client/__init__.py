"""Client-side session cache and synchronizer."""

from __future__ import annotations

from .cache import SessionCache, Subscription
from .errors import AuthApiError, LinkTimeoutError
from .models import (
    AuthPayload,
    IdentityView,
    LinkStatus,
    SessionChange,
    SessionSnapshot,
    SessionView,
    SyncState,
)
from .ports import AuthApi
from .synchronizer import SessionSynchronizer

__all__ = [
    "AuthApi",
    "AuthApiError",
    "AuthPayload",
    "IdentityView",
    "LinkStatus",
    "LinkTimeoutError",
    "SessionCache",
    "SessionChange",
    "SessionSnapshot",
    "SessionSynchronizer",
    "SessionView",
    "Subscription",
    "SyncState",
]
