"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt only consumes the first 72 bytes of a secret; newer releases raise on
longer input instead of truncating. hash() and verify() both truncate
explicitly so the behaviour is identical across bcrypt versions and a long
password can never be mistaken for a corrupt stored hash.

verify() returns False for a wrong password and raises CorruptHashError only
when the stored value is not a parseable bcrypt hash.
"""

from __future__ import annotations

import bcrypt

from auth.errors import CorruptHashError
from core.config import BCRYPT_ROUNDS

_BCRYPT_MAX_BYTES = 72
_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted, cost-parameterized one-way hashing of secrets.

    Usage:
        hasher = PasswordHasher()
        hashed = hasher.hash("secret1")
        hasher.verify("secret1", hashed)   # True
        hasher.verify("wrong", hashed)     # False

    rounds defaults to BCRYPT_ROUNDS. Tests pass a lower value to keep the
    suite fast; production wiring never does.
    """

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self._rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once per hasher so the
        # first unknown-account login is not measurably faster than the rest.
        self._dummy_hash = self.hash("safeed_timing_dummy")

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, secret: str) -> str:
        """Return a bcrypt hash of the given plaintext secret."""
        if not secret:
            raise ValueError("Password cannot be empty")
        return bcrypt.hashpw(_encode(secret), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, secret: str, hashed: str) -> bool:
        """Return True if the secret matches the stored bcrypt hash.

        Raises CorruptHashError if `hashed` is not a well-formed bcrypt hash.
        """
        if not hashed or not hashed.startswith(_BCRYPT_PREFIXES) or len(hashed) != 60:
            raise CorruptHashError()
        try:
            return bcrypt.checkpw(_encode(secret or ""), hashed.encode("utf-8"))
        except ValueError as exc:
            raise CorruptHashError() from exc

    def verify_dummy(self, secret: str) -> None:
        """Burn one bcrypt verification when no account exists [C1].

        Always call this instead of returning early on an unknown account so
        response time does not reveal whether an email is registered.
        """
        self.verify(secret, self._dummy_hash)
