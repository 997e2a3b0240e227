"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and the service do the work.

Two views of a user exist on purpose:
  UserRecord -- what the store persists, including secret_hash. It never
                leaves auth/store.py and auth/service.py.
  Identity   -- what every layer above the service sees. No secret material.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of authorization roles."""

    STANDARD = "standard"
    PRIVILEGED = "privileged"


@dataclass(frozen=True)
class Identity:
    """A registered account as exposed outside the credential store."""

    id: int
    handle: str
    role: Role
    created_at: str


@dataclass(frozen=True)
class UserRecord:
    """A persisted user row. secret_hash is the bcrypt output, never the secret."""

    id: int
    handle: str
    secret_hash: str
    role: Role
    created_at: str

    def to_identity(self) -> Identity:
        return Identity(id=self.id, handle=self.handle, role=self.role, created_at=self.created_at)


@dataclass(frozen=True)
class Session:
    """A server-held session.

    token_digest is HMAC-SHA256(SECRET_KEY, token). The raw token exists only
    in the client's cookie and in the return value of SessionStore.create().
    created_at / expires_at are epoch seconds.
    """

    token_digest: str
    identity_id: int
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
