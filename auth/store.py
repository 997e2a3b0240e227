"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  secret_hash is returned only inside UserRecord, which the service converts
  to Identity before anything leaves the auth package.

  Handle uniqueness is enforced twice: the service checks get_by_handle()
  under its registration lock, and the UNIQUE index rejects anything that
  slips past (e.g. a second process writing the same DB). The IntegrityError
  is mapped to DuplicateHandle here so callers see one failure type.

Handles are compared by exact, case-sensitive match. No normalization.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateHandle, NotFound
from auth.models import Role, UserRecord
from core.config import get_settings

logger = logging.getLogger("sessiongate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("handle", String(255), nullable=False, unique=True),
    Column("secret_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.STANDARD.value),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine construction (shared with auth/sessions.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float | None = None) -> Engine:
    """Create an Engine with the SQLite tweaks both auth stores need.

    check_same_thread=False: FastAPI runs sync handlers in a threadpool.
    timeout: SQLite busy timeout, so a request waiting on the write lock
        gives up after db_timeout_seconds instead of hanging.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout if timeout is not None else get_settings().db_timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for UserRecord entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        rec = store.create_user("a@x.com", hasher.hash("secret1"), Role.PRIVILEGED)
        store.get_by_handle("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, timeout: float | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        """Return the number of identities ever created.

        Users are never deleted, so this is monotonically non-decreasing.
        The registration flow uses it to decide the bootstrap role.
        """
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def count_privileged(self) -> int:
        """Return the number of privileged identities."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.PRIVILEGED.value)
            ).scalar()
        return result or 0

    def get_by_handle(self, handle: str) -> UserRecord | None:
        """Look up a user by exact handle (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.handle == handle)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> UserRecord | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[UserRecord]:
        """Return all users in creation order. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, handle: str, secret_hash: str, role: Role) -> UserRecord:
        """Insert a new user and return the stored record.

        Raises DuplicateHandle if the handle already exists.
        """
        created_at = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        handle=handle,
                        secret_hash=secret_hash,
                        role=Role(role).value,
                        created_at=created_at,
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateHandle() from exc
        logger.info("Created user id=%s role=%s", user_id, Role(role).value)
        return UserRecord(id=user_id, handle=handle, secret_hash=secret_hash, role=Role(role), created_at=created_at)

    def update_role(self, user_id: int, role: Role) -> UserRecord:
        """Set the role of an existing user and return the updated record.

        Raises NotFound if user_id does not exist. No self-demotion or
        last-privileged rule is enforced here; that is the caller's policy.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=Role(role).value))
            if result.rowcount == 0:
                raise NotFound()
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        handle=row.handle,
        secret_hash=row.secret_hash,
        role=Role(row.role),
        created_at=row.created_at,
    )
