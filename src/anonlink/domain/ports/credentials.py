"""Ports for credential handling collaborators."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CredentialHasher(Protocol):
    """Derives and verifies password hashes; the algorithm is the adapter's business."""

    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, secret_hash: str) -> bool: ...


@runtime_checkable
class MagicLinkSender(Protocol):
    """Delivers a passwordless sign-in token to the owner of ``email``."""

    def send(self, *, email: str, token: str) -> None: ...
