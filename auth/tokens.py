"""
auth/tokens.py -- Session token generation, at-rest digest, and cookie helpers.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy -- guessing a
       live token is computationally infeasible. The token is opaque; it
       carries no claims and is only meaningful as a lookup key.

  At rest: the session table stores HMAC-SHA256(SECRET_KEY, token), never
       the token itself. An attacker who obtains the DB cannot replay
       sessions without also knowing SECRET_KEY. The digest is deterministic,
       so lookup stays a primary-key hit.

  Cookie: HttpOnly (no JS access), SameSite from settings (strict by
       default), Secure when SECURE_COOKIES=true, Max-Age = session TTL so
       the browser drops the cookie when the server-side session expires.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_BEARER_PREFIX = "Bearer "


def generate_session_token() -> str:
    """Return a new opaque, URL-safe session token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        token.encode(),
        hashlib.sha256,
    ).hexdigest()


def extract_token(cookies, headers) -> str | None:
    """Pull the session token from the request carriers.

    Priority:
      1. Session cookie -- set by POST /auth/login.
      2. Authorization: Bearer header -- for non-browser clients.

    Returns None when neither carrier holds a non-empty value.
    """
    token = cookies.get(_settings.session_cookie_name)
    if token:
        return token
    auth_header = headers.get("Authorization", "")
    if auth_header.startswith(_BEARER_PREFIX):
        return auth_header[len(_BEARER_PREFIX) :] or None
    return None


def set_session_cookie(response, token: str, max_age: int = 0) -> None:
    """Write the session token as an HttpOnly cookie on the response.

    Args:
        response: FastAPI/Starlette response object.
        token:    Raw session token returned by SessionStore.create().
        max_age:  Cookie lifetime in seconds. If 0 (default), uses
                  Settings.session_ttl_seconds.
    """
    duration = max_age if max_age > 0 else _settings.session_ttl_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite=_settings.session_cookie_samesite,
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_session_cookie(response) -> None:
    """Expire the session cookie. Attributes must match the ones used to set it."""
    response.delete_cookie(
        _settings.session_cookie_name,
        httponly=True,
        samesite=_settings.session_cookie_samesite,
        secure=_settings.secure_cookies,
    )
