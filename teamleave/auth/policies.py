"""Authorization policies — explicit (caller, resource) → allow/deny checks.

Every core operation calls one of these at its boundary instead of relying
on role state stashed on the request.  The predicates return booleans;
``authorize`` turns a denial into a ``ForbiddenException``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from teamleave.common.constants import PERMISSIONS, UserRole
from teamleave.common.exceptions import ForbiddenException

if TYPE_CHECKING:
    from teamleave.leave.models import LeaveRequest
    from teamleave.users.models import User


@dataclass(frozen=True)
class Principal:
    """Authenticated caller identity: the only thing the core needs to know."""

    id: uuid.UUID
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(id=user.id, role=user.role)

    @property
    def permissions(self) -> list[str]:
        return PERMISSIONS.get(self.role, [])


def has_permission(principal: Principal, permission: str) -> bool:
    return permission in principal.permissions


# ── Leave requests ──────────────────────────────────────────────────

def can_view_leave(principal: Principal, leave: LeaveRequest) -> bool:
    if has_permission(principal, "leave:read_all"):
        return True
    return leave.user_id == principal.id and has_permission(principal, "leave:read_own")


def can_set_leave_status(principal: Principal) -> bool:
    return has_permission(principal, "leave:approve") and has_permission(
        principal, "leave:reject"
    )


def can_delete_leave(principal: Principal, leave: LeaveRequest) -> bool:
    if has_permission(principal, "leave:delete_all"):
        return True
    return leave.user_id == principal.id and has_permission(principal, "leave:delete_own")


# ── Users / ledger ──────────────────────────────────────────────────

def can_view_user(principal: Principal, user_id: uuid.UUID) -> bool:
    if has_permission(principal, "profile:read_all"):
        return True
    return user_id == principal.id


def can_manage_users(principal: Principal) -> bool:
    return has_permission(principal, "profile:update")


def can_adjust_quota(principal: Principal) -> bool:
    return has_permission(principal, "quota:adjust")


def can_delete_user(principal: Principal) -> bool:
    return has_permission(principal, "profile:delete")


# ── Enforcement ─────────────────────────────────────────────────────

def authorize(allowed: bool, detail: str = "Not authorized.") -> None:
    """Raise ForbiddenException unless *allowed*."""
    if not allowed:
        raise ForbiddenException(detail=detail)
