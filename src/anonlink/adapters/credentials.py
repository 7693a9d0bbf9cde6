"""Password hashing and magic-link delivery adapters."""

from __future__ import annotations

import hmac
import os
from logging import getLogger
from typing import Final

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

log = getLogger(__name__)

SALT_BYTES: Final[int] = 16
DIGEST_BYTES: Final[int] = 32
_SCHEME: Final[str] = "scrypt"


def _scrypt_hash(secret: str, salt: bytes, *, n: int, r: int, p: int) -> bytes:
    kdf = Scrypt(salt=salt, length=DIGEST_BYTES, n=n, r=r, p=p)
    return kdf.derive(secret.encode("utf-8"))


class ScryptCredentialHasher:
    """Encodes hashes as ``scrypt$n$r$p$salt$digest`` so parameters can change later."""

    def __init__(self, *, n: int = 2**14, r: int = 8, p: int = 1) -> None:
        self.n = n
        self.r = r
        self.p = p

    def hash(self, secret: str) -> str:
        salt = os.urandom(SALT_BYTES)
        digest = _scrypt_hash(secret, salt, n=self.n, r=self.r, p=self.p)
        return "$".join((_SCHEME, str(self.n), str(self.r), str(self.p), salt.hex(), digest.hex()))

    def verify(self, secret: str, secret_hash: str) -> bool:
        parts = secret_hash.split("$")
        if len(parts) != 6 or parts[0] != _SCHEME:
            log.warning("Unrecognised password hash format")
            return False
        try:
            n, r, p = (int(value) for value in parts[1:4])
            salt = bytes.fromhex(parts[4])
            expected = bytes.fromhex(parts[5])
        except ValueError:
            log.warning("Corrupt password hash")
            return False
        digest = _scrypt_hash(secret, salt, n=n, r=r, p=p)
        return hmac.compare_digest(digest, expected)


class LoggingMagicLinkSender:
    """Development sender: writes the sign-in link to the log instead of mailing it."""

    def __init__(self, *, base_url: str = "http://localhost:3000") -> None:
        self.base_url = base_url.rstrip("/")

    def link_for(self, token: str) -> str:
        return f"{self.base_url}/identity/magic-link/verify?token={token}"

    def send(self, *, email: str, token: str) -> None:
        log.info("Magic link for %s: %s", email, self.link_for(token))
