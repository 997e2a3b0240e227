"""
api/routes/admin.py -- User administration endpoints (privileged only).

Routes:
  GET    /admin/users                  -- list every identity
  PATCH  /admin/users/{user_id}/role   -- change an identity's role
  DELETE /admin/users/{user_id}/sessions -- force-logout an identity

Every route depends on require_privileged, which runs both guard stages:
401 without a live session, 403 for a standard identity.

[M4] PATCH refuses to demote the last privileged identity (409), so the
system can never end up with nobody able to administer it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import IdentityResponse, RevokeResponse, RoleUpdate
from auth.dependencies import get_auth_service, require_privileged
from auth.models import Identity
from auth.service import AuthService

router = APIRouter()


@router.get("/admin/users", response_model=list[IdentityResponse])
def list_users(
    identity: Identity = Depends(require_privileged),
    service: AuthService = Depends(get_auth_service),
) -> list[IdentityResponse]:
    """List all identities in creation order."""
    return [IdentityResponse.from_identity(i) for i in service.list_identities()]


@router.patch("/admin/users/{user_id}/role", response_model=IdentityResponse)
def update_role(
    user_id: int,
    body: RoleUpdate,
    identity: Identity = Depends(require_privileged),
    service: AuthService = Depends(get_auth_service),
) -> IdentityResponse:
    """Set a user's role. 404 for an unknown id, 409 for the last privileged identity [M4]."""
    updated = service.change_role(identity, user_id, body.role)
    return IdentityResponse.from_identity(updated)


@router.delete("/admin/users/{user_id}/sessions", response_model=RevokeResponse)
def revoke_sessions(
    user_id: int,
    identity: Identity = Depends(require_privileged),
    service: AuthService = Depends(get_auth_service),
) -> RevokeResponse:
    """Invalidate every session of a user, forcing them to log in again."""
    revoked = service.revoke_sessions(user_id)
    return RevokeResponse(message="Sessions revoked.", revoked=revoked)
