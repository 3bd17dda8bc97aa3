"""Auth service — password hashing, JWT management, session lifecycle."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import bcrypt
from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.models import UserSession
from teamleave.auth.policies import Principal, authorize, can_manage_users
from teamleave.auth.schemas import RegisterRequest
from teamleave.common.audit import create_audit_entry
from teamleave.common.constants import UserRole
from teamleave.common.exceptions import ConflictError
from teamleave.config import settings
from teamleave.users.models import User


# ── Passwords ───────────────────────────────────────────────────────

def hash_password(plain_password: str) -> str:
    return bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


# ── JWT helpers ─────────────────────────────────────────────────────

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(user_id: uuid.UUID, role: UserRole) -> tuple[str, int]:
    """Return (encoded_jwt, expires_in_seconds)."""
    expires_in = settings.JWT_EXPIRY_HOURS * 3600
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "jti": uuid.uuid4().hex,  # Two logins in the same second still get distinct tokens
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_in


# ── Registration / login ────────────────────────────────────────────

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()


async def register_user(
    db: AsyncSession,
    data: RegisterRequest,
    actor: Optional[Principal] = None,
) -> User:
    """Create a user whose balance starts at its full quota.

    Anonymous sign-ups always get the ``user`` role and the default quota;
    only an admin caller may choose role or quota.
    """
    role = UserRole.user
    quota = settings.DEFAULT_ANNUAL_LEAVE_QUOTA
    if data.role is not None or data.annual_leave_quota is not None:
        authorize(
            actor is not None and can_manage_users(actor),
            "Only administrators can set role or leave quota.",
        )
        role = data.role or role
        if data.annual_leave_quota is not None:
            quota = data.annual_leave_quota

    email = data.email.lower()
    if await get_user_by_email(db, email) is not None:
        raise ConflictError("email", email)

    user = User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        role=role,
        annual_leave_quota=quota,
        remaining_leaves=Decimal(quota),
    )
    db.add(user)
    await db.flush()

    await create_audit_entry(
        db,
        action="create",
        entity_type="user",
        entity_id=user.id,
        actor_id=actor.id if actor else user.id,
        new_values={
            "email": email,
            "role": role.value,
            "annual_leave_quota": quota,
        },
    )
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """Return the user when the credentials match, else None."""
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


# ── Session management ──────────────────────────────────────────────

async def create_session(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    user_agent: Optional[str],
) -> tuple[str, int]:
    """Issue an access token and persist its session.  Returns (token, expires_in)."""
    access_token, expires_in = create_access_token(user.id, user.role)

    session = UserSession(
        user_id=user.id,
        token_hash=hash_token(access_token),
        ip_address=ip,
        user_agent=user_agent,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    )
    db.add(session)
    await db.flush()

    return access_token, expires_in


async def revoke_session(db: AsyncSession, token_hash: str) -> None:
    """Mark a session as revoked by its token hash."""
    result = await db.execute(
        select(UserSession).where(UserSession.token_hash == token_hash),
    )
    session = result.scalars().first()
    if session:
        session.is_revoked = True
        await db.flush()
