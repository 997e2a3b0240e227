"""
auth/service.py -- Authentication service: register, login, logout, resolve.

Pattern: Service layer over two repositories. AuthService is the only
component that combines UserStore, SessionStore and PasswordHasher; routes,
guards and the CLI call it rather than the stores.

Concurrency:
  [B1] Bootstrap race. The first registered identity becomes privileged.
       The check-then-create sequence (handle lookup, count_users() == 0,
       insert) runs under self._registry_lock, so two concurrent first
       registrations can never both see an empty table. The bcrypt hash is
       computed BEFORE taking the lock -- it is the slow step and depends
       only on the input.

  [B2] Role changes share the same lock, so two concurrent demotions cannot
       both pass the last-privileged check.

  Session atomicity (one live session per identity) lives in SessionStore.

Security:
  [C1] login() always runs bcrypt, against a dummy hash when the handle is
       unknown, and raises the same InvalidCredentials either way. Neither
       the error nor the response time tells an attacker whether the handle
       exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading

from auth.errors import AlreadyRegistered, InvalidCredentials, LastPrivilegedIdentity, NotFound
from auth.models import Identity, Role
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("sessiongate.auth")


class AuthService:
    """Orchestrates credential checks and the session lifecycle.

    Usage:
        service = AuthService(UserStore(), SessionStore(), PasswordHasher())
        admin = service.register("a@x.com", "secret1")   # privileged
        identity, token = service.login("a@x.com", "secret1")
        service.resolve_session(token)                    # -> identity
        service.logout(token)
    """

    def __init__(self, users: UserStore, sessions: SessionStore, hasher: PasswordHasher) -> None:
        self.users = users
        self.sessions = sessions
        self.hasher = hasher
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration [B1]
    # ------------------------------------------------------------------

    def register(self, handle: str, secret: str) -> Identity:
        """Create a new identity. The very first one is privileged.

        Raises AlreadyRegistered (DuplicateHandle) if the handle is taken.
        """
        secret_hash = self.hasher.hash(secret)
        with self._registry_lock:
            if self.users.get_by_handle(handle) is not None:
                logger.info("Registration rejected: handle already registered")
                raise AlreadyRegistered()
            role = Role.PRIVILEGED if self.users.count_users() == 0 else Role.STANDARD
            record = self.users.create_user(handle, secret_hash, role)
        if role is Role.PRIVILEGED:
            logger.info("Bootstrap: identity id=%s is the first account and holds the privileged role", record.id)
        return record.to_identity()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def login(self, handle: str, secret: str) -> tuple[Identity, str]:
        """Verify credentials and open a session, replacing any prior one.

        Returns (identity, raw token). Raises InvalidCredentials for an
        unknown handle and for a wrong secret alike [C1].
        """
        record = self.users.get_by_handle(handle)
        if record is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.burn(secret)
            logger.info("Login failed: bad credentials")
            raise InvalidCredentials()
        if not self.hasher.verify(secret, record.secret_hash):
            logger.info("Login failed: bad credentials")
            raise InvalidCredentials()
        token = self.sessions.create(record.id)
        logger.info("Login succeeded for identity id=%s", record.id)
        return record.to_identity(), token

    def logout(self, token: str) -> None:
        """End the session for token. Calling it again is harmless."""
        self.sessions.destroy(token)

    def resolve_session(self, token: str) -> Identity | None:
        """Return the identity behind a live session, or None.

        None covers unknown tokens, expired sessions, and sessions whose
        identity no longer exists.
        """
        identity_id = self.sessions.resolve(token)
        if identity_id is None:
            return None
        record = self.users.get_by_id(identity_id)
        return record.to_identity() if record is not None else None

    def session_expiry(self, token: str) -> float | None:
        """Return the epoch expiry of a live session, or None."""
        session = self.sessions.get(token)
        return session.expires_at if session is not None else None

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_identities(self) -> list[Identity]:
        return [r.to_identity() for r in self.users.list_users()]

    def get_identity(self, identity_id: int) -> Identity:
        record = self.users.get_by_id(identity_id)
        if record is None:
            raise NotFound()
        return record.to_identity()

    def change_role(self, actor: Identity | None, target_id: int, role: Role) -> Identity:
        """Set target_id's role on behalf of actor [B2].

        actor is None when an operator runs the change from the CLI.

        Raises NotFound for an unknown target and LastPrivilegedIdentity when
        the change would leave the system with no privileged identity (this
        includes an actor demoting themselves as the last admin).
        """
        role = Role(role)
        with self._registry_lock:
            target = self.users.get_by_id(target_id)
            if target is None:
                raise NotFound()
            if (
                target.role is Role.PRIVILEGED
                and role is not Role.PRIVILEGED
                and self.users.count_privileged() <= 1
            ):
                raise LastPrivilegedIdentity()
            updated = self.users.update_role(target_id, role)
        logger.info(
            "Identity id=%s changed role of id=%s: %s -> %s",
            actor.id if actor is not None else "operator",
            target_id,
            target.role.value,
            updated.role.value,
        )
        return updated.to_identity()

    def revoke_sessions(self, identity_id: int) -> int:
        """Log identity_id out everywhere. Returns the number of sessions removed."""
        if self.users.get_by_id(identity_id) is None:
            raise NotFound()
        revoked = self.sessions.destroy_all_for_identity(identity_id)
        logger.info("Revoked %d session(s) for identity id=%s", revoked, identity_id)
        return revoked
