"""
api/routes/auth.py -- Registration, login, logout, and current-identity endpoints.

Routes:
  POST /auth/register  -- create an account; the first account is privileged
  POST /auth/login     -- verify credentials; sets the session cookie
  POST /auth/logout    -- ends the session; clears the cookie
  GET  /me             -- current identity (requires a live session)

Security:
  [C1] AuthService.login() provides timing equalization -- never inline the
       handle lookup + bcrypt check here.
  [M5] Cache-Control: no-store on login responses.
  Unknown handle and wrong secret produce the identical 401 body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import IdentityResponse, LoginRequest, MeResponse, MessageResponse, RegisterRequest
from auth.dependencies import get_auth_service, get_current_identity, request_token
from auth.errors import NoSession
from auth.models import Identity
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /auth/register:  public
# - POST /auth/login:     public
# - POST /auth/logout:    session cookie must be present; a stale one is fine (idempotent)
# - GET  /me:             requires a live session (get_current_identity)
router = APIRouter()


@router.post("/auth/register", response_model=IdentityResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> IdentityResponse:
    """Create an account. Returns 409 if the handle is already registered.

    Registering does not log the new account in: no session is opened and no
    cookie is set. Clients call POST /auth/login next.
    """
    identity = service.register(body.handle, body.secret)
    return IdentityResponse.from_identity(identity)


@router.post("/auth/login", response_model=IdentityResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with handle and secret; set the session cookie.

    A successful login replaces any session the identity already had.
    """
    identity, token = service.login(body.handle, body.secret)
    resp = JSONResponse(
        status_code=200,
        content=IdentityResponse.from_identity(identity).model_dump(mode="json", by_alias=True),
    )
    set_session_cookie(resp, token, max_age=service.sessions.ttl)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """End the session and clear the cookie.

    Only the presence of a token is required. Logging out with a token that
    is already invalid succeeds, so repeating the call is harmless.
    """
    token = request_token(request)
    if not token:
        raise NoSession()
    service.logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the identity behind the current session."""
    return MeResponse(id=identity.id, handle=identity.handle, role=identity.role)
