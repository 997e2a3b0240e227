"""
auth/sessions.py -- Server-side session store.

Pattern: Repository + Data Mapper, same shape as auth/store.py. SessionStore
exclusively owns the sessions table; nothing else reads or writes it.

Invariants:
  Single session per identity -- create() deletes every existing row for the
      identity and inserts the new one inside ONE transaction, and all
      mutations are serialized through self._lock. Two concurrent logins for
      the same identity therefore cannot both survive.

  Expiry -- a session created at t0 resolves for every read at t < t0 + TTL
      and is absent for every read at t >= t0 + TTL. Expiry is checked lazily
      on read; an expired row discovered on read is deleted best-effort, and
      purge_expired() sweeps the rest from a background task.

Tokens are never persisted. The primary key is HMAC-SHA256(SECRET_KEY, token)
(see auth/tokens.py), so a DB dump holds no usable session.

The clock is injectable so tests can cross the expiry boundary exactly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, delete, func, select, text
from sqlalchemy.engine import Engine

from auth.models import Session
from auth.store import make_engine
from auth.tokens import generate_session_token, hash_session_token
from core.config import get_settings

logger = logging.getLogger("sessiongate.auth.sessions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_digest", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("identity_id", Integer, nullable=False),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Index("ix_sessions_identity_id", "identity_id"),
    Index("ix_sessions_expires_at", "expires_at"),
)


class SessionStore:
    """Repository for Session entities.

    Usage:
        sessions = SessionStore("sqlite:///:memory:", ttl=86400)
        token = sessions.create(identity_id=1)
        sessions.resolve(token)   # -> 1
        sessions.destroy(token)
        sessions.resolve(token)   # -> None
    """

    def __init__(
        self,
        db_url: str | None = None,
        ttl: int | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.ttl = ttl if ttl is not None else settings.session_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.engine: Engine = make_engine(db_url or settings.database_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, identity_id: int) -> str:
        """Start a new session for identity_id and return its raw token.

        Any existing session for the identity is invalidated in the same
        transaction ("delete old, insert new" is a single atomic step).
        """
        token = generate_session_token()
        now = self._clock()
        with self._lock, self.engine.begin() as conn:
            superseded = conn.execute(delete(_sessions).where(_sessions.c.identity_id == identity_id)).rowcount
            conn.execute(
                _sessions.insert().values(
                    token_digest=hash_session_token(token),
                    identity_id=identity_id,
                    created_at=now,
                    expires_at=now + self.ttl,
                )
            )
        if superseded:
            logger.info("Superseded %d session(s) for identity id=%s", superseded, identity_id)
        return token

    def destroy(self, token: str) -> None:
        """Remove the session for token. Unknown tokens are not an error."""
        with self._lock, self.engine.begin() as conn:
            conn.execute(delete(_sessions).where(_sessions.c.token_digest == hash_session_token(token)))

    def destroy_all_for_identity(self, identity_id: int) -> int:
        """Remove every session owned by identity_id. Returns rows removed."""
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.identity_id == identity_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all sessions whose expiry has passed. Returns rows removed."""
        now = self._clock()
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.expires_at <= now))
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, token: str) -> Session | None:
        """Return the live Session for token, or None if unknown or expired."""
        digest = hash_session_token(token)
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_digest == digest)).fetchone()
        if row is None:
            return None
        session = _row_to_session(row)
        if session.is_expired(self._clock()):
            self._discard_expired(digest)
            return None
        return session

    def resolve(self, token: str) -> int | None:
        """Return the identity id owning token, or None if unknown or expired."""
        session = self.get(token)
        return session.identity_id if session is not None else None

    def count_active(self) -> int:
        """Return the number of sessions that have not yet expired."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.expires_at > self._clock())
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()

    def _discard_expired(self, digest: str) -> None:
        # No-op if the purge task or another reader got there first.
        with self._lock, self.engine.begin() as conn:
            conn.execute(
                delete(_sessions).where(
                    (_sessions.c.token_digest == digest) & (_sessions.c.expires_at <= self._clock())
                )
            )


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        token_digest=row.token_digest,
        identity_id=row.identity_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
