"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names: request bodies use `handle` / `secret` (`email` / `password` are
accepted as aliases); responses use camelCase `createdAt`.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity, Role
from auth.passwords import MAX_SECRET_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    """Shared shape of register / login bodies.

    The handle is NOT stripped or lower-cased: handles are matched exactly.
    """

    handle: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("handle", "email"),
    )
    secret: str = Field(
        min_length=1,
        validation_alias=AliasChoices("secret", "password"),
    )

    @field_validator("secret")
    @classmethod
    def secret_fits_bcrypt(cls, value: str) -> str:
        """Reject secrets bcrypt would silently truncate."""
        if len(value.encode("utf-8")) > MAX_SECRET_BYTES:
            raise ValueError(f"secret must be at most {MAX_SECRET_BYTES} bytes")
        return value


class RegisterRequest(_Credentials):
    """Request body for POST /auth/register."""

    secret: str = Field(
        min_length=6,
        validation_alias=AliasChoices("secret", "password"),
    )


class LoginRequest(_Credentials):
    """Request body for POST /auth/login."""


class RoleUpdate(BaseModel):
    """Request body for PATCH /admin/users/{user_id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Public view of an identity: {id, handle, role, createdAt}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    handle: str
    role: Role
    # alias (not serialization_alias): FastAPI re-validates the by-alias dump.
    created_at: str = Field(alias="createdAt")

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(id=identity.id, handle=identity.handle, role=identity.role, created_at=identity.created_at)


class MeResponse(BaseModel):
    """Response for GET /me."""

    model_config = ConfigDict(frozen=True)

    id: int
    handle: str
    role: Role


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RevokeResponse(BaseModel):
    """Response for DELETE /admin/users/{user_id}/sessions."""

    model_config = ConfigDict(frozen=True)

    message: str
    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
