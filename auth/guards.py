"""
auth/guards.py -- Two-stage authorization pipeline, framework-free.

A protected request walks:

    Unauthenticated --authenticate--> Authenticated --authorize--> Authorized
           |                               |
           +--> NoSession / InvalidSession +--> InsufficientPermissions

Each stage is a pure function GuardContext -> GuardContext that raises a
typed AuthError to reject. Stages read session and credential state through
the resolve callable but never mutate it.

Routes declare their requirement with a RoutePolicy constant rather than
runtime metadata; auth/dependencies.py adapts run_guards() to FastAPI.

Layer rule: no imports from api/ and no fastapi import here.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace

from auth.errors import InsufficientPermissions, InvalidSession, NoSession
from auth.models import Identity, Role

Resolver = Callable[[str], "Identity | None"]


@dataclass(frozen=True)
class GuardContext:
    """Per-request guard state. identity is None until stage 1 passes."""

    token: str | None
    identity: Identity | None = None


@dataclass(frozen=True)
class RoutePolicy:
    """Static access declaration for a route.

    authenticated=False means the route is public and no guard runs.
    An empty required_roles set means any authenticated identity passes.
    """

    authenticated: bool = True
    required_roles: frozenset[Role] = frozenset()


PUBLIC = RoutePolicy(authenticated=False)
AUTHENTICATED = RoutePolicy()
PRIVILEGED_ONLY = RoutePolicy(required_roles=frozenset({Role.PRIVILEGED}))


def authenticate(ctx: GuardContext, resolve: Resolver) -> GuardContext:
    """Stage 1: turn a token into an identity."""
    if not ctx.token:
        raise NoSession()
    identity = resolve(ctx.token)
    if identity is None:
        raise InvalidSession()
    return replace(ctx, identity=identity)


def authorize(ctx: GuardContext, policy: RoutePolicy) -> GuardContext:
    """Stage 2: check the resolved identity's role against the policy."""
    if not policy.required_roles:
        return ctx
    if ctx.identity is None or ctx.identity.role not in policy.required_roles:
        raise InsufficientPermissions()
    return ctx


def run_guards(ctx: GuardContext, policy: RoutePolicy, resolve: Resolver) -> GuardContext:
    """Run every stage the policy requires, in order."""
    if not policy.authenticated:
        return ctx
    return authorize(authenticate(ctx, resolve), policy)
