"""User service layer — ledger reads, profile edits, quota adjustment, deletion."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.models import UserSession
from teamleave.auth.policies import (
    Principal,
    authorize,
    can_adjust_quota,
    can_delete_user,
    can_manage_users,
    can_view_user,
)
from teamleave.auth.service import get_user_by_email, hash_password, verify_password
from teamleave.common.audit import create_audit_entry
from teamleave.common.constants import MAX_ANNUAL_LEAVE_QUOTA
from teamleave.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from teamleave.common.pagination import PaginatedResponse, PaginationParams, paginate
from teamleave.leave.models import LeaveRequest
from teamleave.users.models import User
from teamleave.users.schemas import ProfileUpdate, UserOut, UserUpdate

logger = logging.getLogger(__name__)


class UserService:
    """Async user operations: listing, profile, admin edits, quota, deletion."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> User:
        query = select(User).where(User.id == user_id)
        if for_update:
            # Serializes ledger writes for this user until the transaction ends
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    @staticmethod
    async def _ensure_email_free(
        db: AsyncSession,
        email: str,
        user_id: uuid.UUID,
    ) -> str:
        email = email.lower()
        existing = await get_user_by_email(db, email)
        if existing is not None and existing.id != user_id:
            raise ConflictError("email", email)
        return email

    @staticmethod
    def _apply_quota(user: User, new_quota: int) -> Decimal:
        """Overwrite the quota and shift the balance by the delta. Returns the delta."""
        delta = Decimal(new_quota - user.annual_leave_quota)
        user.annual_leave_quota = new_quota
        user.remaining_leaves = user.remaining_leaves + delta
        return delta

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_users(
        db: AsyncSession,
        actor: Principal,
        params: PaginationParams,
    ) -> PaginatedResponse[UserOut]:
        """List all users (admin only)."""
        authorize(can_manage_users(actor), "Admin access required.")

        query = select(User).order_by(User.name)
        rows, meta = await paginate(db, query, params, model=User)
        return PaginatedResponse[UserOut](
            data=[UserOut.model_validate(u) for u in rows],
            meta=meta,
        )

    @staticmethod
    async def get_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        actor: Principal,
    ) -> UserOut:
        """Get a user by id — admins see anyone, users only themselves."""
        user = await UserService._get_user(db, user_id)
        authorize(can_view_user(actor, user.id))
        return UserOut.model_validate(user)

    # ─────────────────────────────────────────────────────────────────
    # Quota Adjustment
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def adjust_quota(
        db: AsyncSession,
        user_id: uuid.UUID,
        new_quota: int,
        actor: Principal,
    ) -> UserOut:
        """Set a new annual quota; remaining balance moves by (new − old).

        The delta is additive rather than a reset, so days already consumed
        by approved leave stay consumed.
        """
        authorize(can_adjust_quota(actor), "Only administrators can adjust leave quota.")
        if not 0 <= new_quota <= MAX_ANNUAL_LEAVE_QUOTA:
            raise ValidationException(
                {"annual_leave_quota": [
                    f"Quota must be an integer between 0 and {MAX_ANNUAL_LEAVE_QUOTA}."
                ]}
            )

        user = await UserService._get_user(db, user_id, for_update=True)
        old_quota = user.annual_leave_quota
        old_remaining = user.remaining_leaves

        delta = UserService._apply_quota(user, new_quota)
        user.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="adjust_quota",
            entity_type="user",
            entity_id=user.id,
            actor_id=actor.id,
            old_values={
                "annual_leave_quota": old_quota,
                "remaining_leaves": str(old_remaining),
            },
            new_values={
                "annual_leave_quota": new_quota,
                "remaining_leaves": str(user.remaining_leaves),
                "delta": str(delta),
            },
        )
        logger.info(
            "Quota for user %s changed %s -> %s (remaining %s -> %s)",
            user.id, old_quota, new_quota, old_remaining, user.remaining_leaves,
        )
        return UserOut.model_validate(user)

    # ─────────────────────────────────────────────────────────────────
    # Admin Update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        data: UserUpdate,
        actor: Principal,
    ) -> UserOut:
        """Admin edit of name / email / role; a quota change goes through the ledger."""
        authorize(can_manage_users(actor), "Admin access required.")

        if data.annual_leave_quota is not None:
            # Locks the user row and adjusts the balance
            await UserService.adjust_quota(db, user_id, data.annual_leave_quota, actor)

        user = await UserService._get_user(db, user_id)
        old_values: dict[str, Optional[str]] = {}
        new_values: dict[str, Optional[str]] = {}

        if data.name is not None and data.name != user.name:
            old_values["name"], new_values["name"] = user.name, data.name
            user.name = data.name
        if data.email is not None:
            email = await UserService._ensure_email_free(db, data.email, user.id)
            if email != user.email:
                old_values["email"], new_values["email"] = user.email, email
                user.email = email
        if data.role is not None and data.role != user.role:
            old_values["role"], new_values["role"] = user.role.value, data.role.value
            user.role = data.role

        if new_values:
            user.updated_at = datetime.now(timezone.utc)
            await db.flush()
            await create_audit_entry(
                db,
                action="update",
                entity_type="user",
                entity_id=user.id,
                actor_id=actor.id,
                old_values=old_values,
                new_values=new_values,
            )

        return UserOut.model_validate(user)

    # ─────────────────────────────────────────────────────────────────
    # Profile
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_profile(
        db: AsyncSession,
        actor: Principal,
        data: ProfileUpdate,
    ) -> UserOut:
        """Update the caller's own name, email or password."""
        user = await UserService._get_user(db, actor.id)

        if data.name is not None:
            user.name = data.name
        if data.email is not None:
            user.email = await UserService._ensure_email_free(db, data.email, user.id)

        if data.current_password and data.new_password:
            if not verify_password(data.current_password, user.password_hash):
                raise ValidationException(
                    {"current_password": ["Current password is incorrect."]}
                )
            user.password_hash = hash_password(data.new_password)

        user.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="update_profile",
            entity_type="user",
            entity_id=user.id,
            actor_id=actor.id,
            new_values={
                "name": user.name,
                "email": user.email,
                "password_changed": bool(data.new_password),
            },
        )
        return UserOut.model_validate(user)

    # ─────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def delete_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        actor: Principal,
    ) -> dict:
        """Delete a user together with their leave requests and sessions."""
        authorize(can_delete_user(actor), "Admin access required.")

        user = await UserService._get_user(db, user_id, for_update=True)
        email = user.email

        # Explicit so the cascade holds even where the database does not
        # enforce ON DELETE CASCADE (e.g. SQLite without foreign_keys)
        await db.execute(delete(LeaveRequest).where(LeaveRequest.user_id == user_id))
        await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await db.delete(user)
        await db.flush()

        await create_audit_entry(
            db,
            action="delete",
            entity_type="user",
            entity_id=user_id,
            actor_id=actor.id if actor.id != user_id else None,
            old_values={"email": email},
        )
        logger.info("User %s deleted by %s", user_id, actor.id)
        return {"message": "User deleted successfully"}
