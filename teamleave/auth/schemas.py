"""Auth Pydantic schemas for request / response validation."""


import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from teamleave.common.constants import MAX_ANNUAL_LEAVE_QUOTA, UserRole


# ── Requests ────────────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    # Admin-only fields
    role: Optional[UserRole] = None
    annual_leave_quota: Optional[int] = Field(None, ge=0, le=MAX_ANNUAL_LEAVE_QUOTA)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ── Embedded / Shared ──────────────────────────────────────────────

class UserInfo(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    annual_leave_quota: int
    remaining_leaves: Decimal


# ── Responses ───────────────────────────────────────────────────────

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class MeResponse(UserInfo):
    permissions: list[str]
