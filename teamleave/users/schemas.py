"""User Pydantic v2 schemas — request / response validation."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from teamleave.common.constants import MAX_ANNUAL_LEAVE_QUOTA, UserRole


class UserBrief(BaseModel):
    """Minimal user info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str


class UserOut(BaseModel):
    """Full user representation; never includes the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    annual_leave_quota: int
    remaining_leaves: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserUpdate(BaseModel):
    """Admin edit of a user. Changing the quota adjusts the balance by the delta."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    annual_leave_quota: Optional[int] = Field(None, ge=0, le=MAX_ANNUAL_LEAVE_QUOTA)


class ProfileUpdate(BaseModel):
    """Self-service profile edit. Quota and balance are not editable here."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = Field(None, min_length=6, max_length=128)

    @model_validator(mode="after")
    def validate_password_pair(self) -> "ProfileUpdate":
        if self.new_password and not self.current_password:
            raise ValueError("current_password is required to set a new password.")
        return self
