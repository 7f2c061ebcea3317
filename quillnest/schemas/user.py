"""
Quillnest Backend — User & Credential Schemas
===============================================

What:  Request bodies for the credential flows and profile routes, and the
       public user representation.
Why:   `extra="forbid"` turns unknown fields into a 400 instead of silently
       ignoring them (no mass-assignment of is_admin / is_verified).

Security:
    UserResponse has no password_hash, reset_token or session_version field.
    Responses are always built through it, never from the ORM row directly.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from quillnest.services.passwords import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


def check_password_strength(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    return value


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SignupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(description="8+ characters, at most 72 bytes")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_strength(v)


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=256)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """
    Body of PUT /reset-password.

    `token` is the value from the emailed link. Mismatched passwords are
    reported by the service, not here, so the message matches the flow's
    other 400s.
    """
    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=4096)
    password: str
    confirm_password: str = Field(min_length=1, max_length=256)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_strength(v)


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def require_one_field(self) -> "UpdateUserRequest":
        if self.username is None and self.email is None:
            raise ValueError("Provide at least one of: username, email")
        return self


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """Public profile of one user."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    email: str
    is_admin: bool
    is_verified: bool
    picture_url: Optional[str] = Field(default=None, description="Profile picture URL, if any")
    created_at: datetime

    @classmethod
    def from_user(cls, user, picture_url: Optional[str] = None) -> "UserResponse":
        # Column attributes only: relationships are never lazy-loaded here
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_admin=user.is_admin,
            is_verified=user.is_verified,
            picture_url=picture_url,
            created_at=user.created_at,
        )


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total_count: int


class SignupResponse(BaseModel):
    """
    Returned with 201 even when the verification email could not be sent:
    the account exists either way, `email_sent` tells the client which case
    it is in.
    """
    message: str
    user: UserResponse
    email_sent: bool
    warning: Optional[str] = None


class VerifyResponse(BaseModel):
    message: str
    verified: bool
    resent: bool = False
    email_sent: Optional[bool] = None


class LoginResponse(BaseModel):
    message: str = "Login successful"
    token: str = Field(description="Session bearer token")
    token_type: str = "bearer"
    expires_in: int = Field(description="Token lifetime in seconds")
    user: UserResponse


class PictureResponse(BaseModel):
    message: str
    picture_url: str
    user: UserResponse


class AdminGrantResponse(BaseModel):
    message: str
    user: UserResponse
