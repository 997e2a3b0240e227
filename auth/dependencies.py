"""
auth/dependencies.py -- FastAPI Depends() helpers for the guard pipeline.

require(policy) builds a dependency that extracts the session token (cookie
first, then Authorization: Bearer), runs auth.guards.run_guards() with the
route's declared RoutePolicy, attaches the identity to request.state, and
returns it. Rejections propagate as AuthError subclasses; api/main.py maps
them to 401/403.

    @router.get("/me")
    def me(identity: Identity = Depends(get_current_identity)): ...

    @router.get("/admin/users")
    def users(identity: Identity = Depends(require_privileged)): ...

Layer rule: no imports from api/. This is the one auth module that may import
fastapi, because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.guards import AUTHENTICATED, PRIVILEGED_ONLY, GuardContext, RoutePolicy, run_guards
from auth.models import Identity
from auth.service import AuthService
from auth.tokens import extract_token


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state by the lifespan."""
    return request.app.state.auth_service


def request_token(request: Request) -> str | None:
    """Return the session token carried by the request, or None."""
    return extract_token(request.cookies, request.headers)


def require(policy: RoutePolicy) -> Callable[[Request], Identity | None]:
    """Return a dependency enforcing policy on the current request."""

    def dependency(request: Request) -> Identity | None:
        service = get_auth_service(request)
        ctx = run_guards(GuardContext(token=request_token(request)), policy, service.resolve_session)
        request.state.identity = ctx.identity
        return ctx.identity

    return dependency


# Static route policies -- referenced directly in route signatures.
get_current_identity = require(AUTHENTICATED)
require_privileged = require(PRIVILEGED_ONLY)
