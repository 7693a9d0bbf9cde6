"""Normalising and building credentials from raw user input."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from anonlink.domain.errors import ValidationError
from anonlink.domain.model import Credential, CredentialKind

if TYPE_CHECKING:
    from anonlink.domain.ports.credentials import CredentialHasher

_EMAIL_PATTERN: Final = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH: Final[int] = 8
MAX_PASSWORD_LENGTH: Final[int] = 128


def normalize_email(raw: str) -> str:
    email = raw.strip().lower()
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {raw!r}", user_message="Invalid email address.")
    return email


@dataclass(frozen=True, slots=True)
class CredentialInput:
    """Raw credential as submitted by a client. ``password`` is absent for magic links."""

    email: str
    password: str | None = field(default=None, repr=False)

    @property
    def kind(self) -> CredentialKind:
        return CredentialKind.MAGIC_LINK if self.password is None else CredentialKind.PASSWORD

    def normalized_email(self) -> str:
        return normalize_email(self.email)

    def validate_password(self) -> str:
        password = self.password
        if password is None:
            raise ValidationError("Password is required", user_message="Password is required.")
        if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError(
                "Password length out of bounds",
                user_message=(
                    f"Password must be between {MIN_PASSWORD_LENGTH} and "
                    f"{MAX_PASSWORD_LENGTH} characters."
                ),
            )
        return password

    def to_credential(self, hasher: CredentialHasher) -> Credential:
        email = self.normalized_email()
        if self.kind is CredentialKind.MAGIC_LINK:
            return Credential(kind=CredentialKind.MAGIC_LINK, email=email)
        return Credential(
            kind=CredentialKind.PASSWORD,
            email=email,
            secret_hash=hasher.hash(self.validate_password()),
        )
