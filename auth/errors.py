"""
auth/errors.py -- Typed failures raised by the auth package.

Every exception here is an expected, user-facing outcome. The HTTP boundary
(api/main.py) turns them into the standard error envelope using the
status_code / code / message carried on the instance. They are never logged
as unexpected errors.

Storage faults (SQLAlchemy OperationalError etc.) are deliberately NOT part
of this hierarchy -- they propagate to the generic 500 handler.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses set status_code, code and a default message."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class DuplicateHandle(AuthError):
    status_code = 409
    code = "duplicate_handle"
    message = "An account with that handle already exists."


# Name used by the registration flow; same failure.
AlreadyRegistered = DuplicateHandle


class InvalidCredentials(AuthError):
    # One message for unknown handle and wrong secret -- no account enumeration.
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid handle or secret."


class NoSession(AuthError):
    status_code = 401
    code = "no_session"
    message = "Authentication required."


class InvalidSession(AuthError):
    status_code = 401
    code = "invalid_session"
    message = "Session is invalid or has expired."


class InsufficientPermissions(AuthError):
    status_code = 403
    code = "insufficient_permissions"
    message = "Insufficient permissions."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    message = "User not found."


class LastPrivilegedIdentity(AuthError):
    status_code = 409
    code = "last_privileged"
    message = "Cannot demote the last privileged account."


class SecretTooLong(AuthError):
    # bcrypt ignores everything past 72 bytes; refuse rather than truncate.
    status_code = 422
    code = "secret_too_long"
    message = "Secret must be at most 72 bytes."
