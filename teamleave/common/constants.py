"""Enums and constants for Team Leave — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class LeaveType(str, enum.Enum):
    full = "full"
    half = "half"


# ── Role-based permissions ──────────────────────────────────────────

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.user: [
        "profile:read_own",
        "profile:update_own",
        "leave:request",
        "leave:read_own",
        "leave:delete_own",
        "calendar:read",
    ],
    UserRole.admin: [
        "profile:read_own",
        "profile:update_own",
        "profile:read_all",
        "profile:create",
        "profile:update",
        "profile:delete",
        "leave:request",
        "leave:read_own",
        "leave:read_all",
        "leave:approve",
        "leave:reject",
        "leave:delete_own",
        "leave:delete_all",
        "quota:adjust",
        "calendar:read",
    ],
}

# ── Misc constants ──────────────────────────────────────────────────

UNKNOWN_USER_NAME = "Unknown User"
UNKNOWN_USER_EMAIL = "No email"
MAX_PAGE_SIZE = 100
# remaining_leaves is NUMERIC(6,1); keeps quota-driven balances in range
MAX_ANNUAL_LEAVE_QUOTA = 9999
DEFAULT_PAGE_SIZE = 50
