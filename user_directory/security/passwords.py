"""bcrypt-backed credential hashing."""

from __future__ import annotations

import bcrypt


class BcryptHasher:
    """Hash and verify account passwords."""

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        # verified when login finds no account so both failure paths do the same work
        self._dummy_hash = self.hash("directory-dummy-password")

    def hash(self, password: str) -> str:
        """Return a bcrypt hash for ``password``."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, password: str, hashed: str | None) -> bool:
        """Return ``True`` when ``password`` matches ``hashed``; malformed hashes never match."""
        if not hashed:
            bcrypt.checkpw(password.encode("utf-8"), self._dummy_hash.encode("utf-8"))
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False
