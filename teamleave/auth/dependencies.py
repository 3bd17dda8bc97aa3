"""Auth dependencies — JWT validation, principal resolution, role gates."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.models import UserSession
from teamleave.auth.policies import Principal, authorize
from teamleave.auth.service import hash_token
from teamleave.common.constants import UserRole
from teamleave.config import settings
from teamleave.database import get_db
from teamleave.users.models import User


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate JWT, verify session, return the authenticated User."""
    token = _extract_bearer(request)

    # Decode JWT
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    # Verify session exists, not revoked, not expired
    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > datetime.now(timezone.utc),
        ),
    )
    if result.scalars().first() is None:
        raise HTTPException(status_code=401, detail="Session invalid or expired.")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User account not found.")
    return user


async def get_current_principal(
    user: User = Depends(get_current_user),
) -> Principal:
    """Reduce the authenticated user to the {id, role} the core consumes.

    The role comes from the stored user, not the token claim, so a role
    change takes effect without waiting for the token to expire.
    """
    return Principal.from_user(user)


async def get_optional_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[Principal]:
    """Like get_current_principal, but anonymous callers yield None."""
    if not request.headers.get("Authorization"):
        return None
    user = await get_current_user(request, db)
    return Principal.from_user(user)


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        authorize(
            principal.role in allowed_roles,
            f"Role '{principal.role.value}' is not permitted. "
            f"Required: {[r.value for r in allowed_roles]}.",
        )
        return principal

    return _check
