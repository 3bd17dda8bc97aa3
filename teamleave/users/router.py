"""Users router — listing, profile, admin edits (incl. quota), deletion."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.dependencies import get_current_principal, require_role
from teamleave.auth.policies import Principal
from teamleave.common.constants import UserRole
from teamleave.common.pagination import PaginatedResponse, PaginationParams
from teamleave.database import get_db
from teamleave.users.schemas import ProfileUpdate, UserOut, UserUpdate
from teamleave.users.service import UserService

router = APIRouter(prefix="", tags=["users"])


# ── GET / — list users (admin) ──────────────────────────────────────

@router.get("", response_model=PaginatedResponse[UserOut])
async def list_users(
    params: PaginationParams = Depends(),
    principal: Principal = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await UserService.list_users(db, principal, params)


# ── PUT /profile — own profile ──────────────────────────────────────
# Declared before /{user_id} so "profile" is not parsed as an id.

@router.put("/profile", response_model=UserOut)
async def update_profile(
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Update own name, email or password. Quota is admin-only."""
    return await UserService.update_profile(db, principal, body)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Admins can read anyone; users only themselves."""
    return await UserService.get_user(db, user_id, principal)


# ── PUT /{id} — admin update ────────────────────────────────────────

@router.put("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Admin edit. A new annual_leave_quota shifts remaining leaves by the delta."""
    return await UserService.update_user(db, user_id, body, principal)


# ── DELETE /{id} ────────────────────────────────────────────────────

@router.delete("/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Admin: delete a user with all of their leave requests and sessions."""
    return await UserService.delete_user(db, user_id, principal)
