"""Account password hashing for sign-up and sign-in.

Stored ``password_hash`` values come from ``BcryptHasher`` in deployments, with
the cost taken from ``BCRYPT_ROUNDS``. ``PASSWORD_HASHER=simple`` swaps in a
digest-only hasher so the suite does not pay bcrypt's cost per registration.
Request bodies are capped at 72 UTF-8 bytes before they reach ``hash``.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

import bcrypt


@runtime_checkable
class PasswordHasher(Protocol):
    """What the account service needs to store and check credentials."""

    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, hashed: str) -> bool: ...


class BcryptHasher:
    """Salted bcrypt; the hash string carries its own salt and cost."""

    def __init__(self, rounds: int = 10) -> None:
        self._rounds = rounds

    def hash(self, plain: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """A stored hash bcrypt cannot parse counts as a mismatch."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False


_DIGEST_TAG = "simple$"


class SimpleHasher:
    """Unsalted SHA-256 digest tagged with ``simple$``; for local runs and tests only."""

    def hash(self, plain: str) -> str:
        return _DIGEST_TAG + hashlib.sha256(plain.encode("utf-8")).hexdigest()

    def verify(self, plain: str, hashed: str) -> bool:
        if not hashed.startswith(_DIGEST_TAG):
            return False
        return hashed == self.hash(plain)


def get_hasher(name: str = "bcrypt", rounds: int = 10) -> PasswordHasher:
    """Resolve the ``PASSWORD_HASHER`` setting."""
    if name == "bcrypt":
        return BcryptHasher(rounds)
    if name == "simple":
        return SimpleHasher()
    raise ValueError(f"Unknown password hasher: {name!r}")
