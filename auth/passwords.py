"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt.checkpw() recomputes the hash with the salt embedded in secret_hash and
compares the result in constant time, so verify() leaks nothing through early
exit.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import SecretTooLong

# bcrypt only looks at the first 72 bytes. Longer secrets are refused so two
# different secrets can never share a hash by truncation.
MAX_SECRET_BYTES = 72


class PasswordHasher:
    """Salted one-way hashing with a fixed cost factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        h = hasher.hash("secret1")
        hasher.verify("secret1", h)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # unknown-handle login is not measurably slower than later ones.
        self._dummy_hash = self.hash("sessiongate_timing_dummy")

    def hash(self, secret: str) -> str:
        """Return a bcrypt hash of secret using this hasher's cost factor.

        Raises SecretTooLong if secret exceeds MAX_SECRET_BYTES once encoded.
        """
        raw = secret.encode("utf-8")
        if len(raw) > MAX_SECRET_BYTES:
            raise SecretTooLong()
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, secret_hash: str) -> bool:
        """Return True if secret matches secret_hash. Malformed hashes return False."""
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, secret: str) -> None:
        """Run one verification against the dummy hash and discard the result.

        Called when the handle is unknown so that response time does not
        reveal whether an account exists.
        """
        self.verify(secret, self._dummy_hash)
