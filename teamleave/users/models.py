"""User ledger ORM model: identity, role, quota and remaining balance."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from teamleave.common.constants import UserRole
from teamleave.database import Base

if TYPE_CHECKING:
    from teamleave.auth.models import UserSession
    from teamleave.leave.models import LeaveRequest


class User(Base):
    """A principal together with its leave ledger.

    ``remaining_leaves`` is kept in half-day units (one decimal place); it
    is only ever changed by quota adjustments and leave status transitions.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.user,
    )
    annual_leave_quota: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=20,
    )
    remaining_leaves: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("20"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    __table_args__ = (
        sa.CheckConstraint("annual_leave_quota >= 0", name="ck_users_quota_non_negative"),
    )

    # ── Relationships ───────────────────────────────────────────────
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="owner",
        foreign_keys="LeaveRequest.user_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    sessions: Mapped[list[UserSession]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.email!r} role={self.role.value}>"
