"""Auth router — registration, login, logout, current user profile."""


from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.dependencies import get_current_user, get_optional_principal
from teamleave.auth.policies import Principal
from teamleave.auth.schemas import (
    LoginRequest,
    MeResponse,
    RegisterRequest,
    TokenResponse,
    UserInfo,
)
from teamleave.auth.service import (
    authenticate,
    create_session,
    hash_token,
    register_user,
    revoke_session,
)
from teamleave.common.audit import create_audit_entry
from teamleave.common.rate_limit import limiter
from teamleave.database import get_db
from teamleave.users.models import User
from teamleave.users.schemas import UserOut

router = APIRouter(prefix="", tags=["auth"])


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        annual_leave_quota=user.annual_leave_quota,
        remaining_leaves=user.remaining_leaves,
    )


# ── POST /register ──────────────────────────────────────────────────

@router.post("/register", response_model=UserOut, status_code=201)
@limiter.limit("10/minute")
async def register(
    request: Request,
    body: RegisterRequest,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    """Create an account. Admins may also set role and leave quota."""
    user = await register_user(db, body, actor=principal)
    return UserOut.model_validate(user)


# ── POST /login ─────────────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate(db, body.email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    ip = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    access_token, expires_in = await create_session(db, user, ip, user_agent)

    await create_audit_entry(
        db,
        action="login",
        entity_type="user_session",
        entity_id=user.id,
        actor_id=user.id,
        new_values={"ip": ip, "user_agent": user_agent},
        ip_address=ip,
        user_agent=user_agent,
    )

    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        user=_user_info(user),
    )


# ── POST /logout — Revoke current session ──────────────────────────

@router.post("/logout")
async def logout(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    token = request.headers.get("Authorization", "").removeprefix("Bearer ")
    await revoke_session(db, hash_token(token))

    await create_audit_entry(
        db,
        action="logout",
        entity_type="user_session",
        entity_id=user.id,
        actor_id=user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    return {"message": "Logged out successfully"}


# ── GET /me — Current user profile ─────────────────────────────────

@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)):
    principal = Principal.from_user(user)
    return MeResponse(
        **_user_info(user).model_dump(),
        permissions=principal.permissions,
    )
