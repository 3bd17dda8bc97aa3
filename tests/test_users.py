"""Users module test suite — quota adjustment, profile edits, admin updates,
cascading deletion and the permission checks around them."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from teamleave.auth.models import UserSession
from teamleave.auth.policies import Principal
from teamleave.auth.service import verify_password
from teamleave.common.constants import MAX_ANNUAL_LEAVE_QUOTA, LeaveStatus, UserRole
from teamleave.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from teamleave.common.pagination import PaginationParams
from teamleave.leave.models import LeaveRequest
from teamleave.leave.schemas import LeaveRequestCreate
from teamleave.leave.service import LeaveService
from teamleave.users.schemas import ProfileUpdate, UserUpdate
from teamleave.users.service import UserService


async def _approve_five_days(db, user, admin: Principal) -> None:
    req = await LeaveService.apply_leave(
        db,
        user.id,
        LeaveRequestCreate(start_date=date(2026, 1, 1), end_date=date(2026, 1, 5)),
    )
    await LeaveService.set_leave_status(db, req.id, LeaveStatus.approved, admin)


# ── Quota adjustment ────────────────────────────────────────────────


class TestAdjustQuota:

    async def test_increase_moves_balance_by_delta(self, db, test_user, test_admin):
        admin = Principal.from_user(test_admin)
        await _approve_five_days(db, test_user, admin)

        result = await UserService.adjust_quota(db, test_user.id, 25, admin)

        assert result.annual_leave_quota == 25
        assert result.remaining_leaves == Decimal("20")

    async def test_decrease_keeps_consumed_days(self, db, test_user, test_admin):
        admin = Principal.from_user(test_admin)
        await _approve_five_days(db, test_user, admin)

        result = await UserService.adjust_quota(db, test_user.id, 10, admin)

        assert result.annual_leave_quota == 10
        assert result.remaining_leaves == Decimal("5")

    async def test_same_quota_changes_nothing(self, db, test_user, test_admin):
        result = await UserService.adjust_quota(
            db, test_user.id, 20, Principal.from_user(test_admin),
        )
        assert result.remaining_leaves == Decimal("20")

    async def test_non_admin_forbidden(self, db, test_user):
        with pytest.raises(ForbiddenException):
            await UserService.adjust_quota(db, test_user.id, 30, Principal.from_user(test_user))

    async def test_negative_quota_rejected(self, db, test_user, test_admin):
        with pytest.raises(ValidationException):
            await UserService.adjust_quota(
                db, test_user.id, -1, Principal.from_user(test_admin),
            )

    async def test_quota_above_column_range_rejected(self, db, test_user, test_admin):
        with pytest.raises(ValidationException) as exc_info:
            await UserService.adjust_quota(
                db, test_user.id, MAX_ANNUAL_LEAVE_QUOTA + 1, Principal.from_user(test_admin),
            )
        assert "annual_leave_quota" in exc_info.value.errors
        await db.refresh(test_user)
        assert test_user.annual_leave_quota == 20

    async def test_unknown_user(self, db, test_admin):
        with pytest.raises(NotFoundException):
            await UserService.adjust_quota(db, uuid.uuid4(), 10, Principal.from_user(test_admin))


# ── Admin update ────────────────────────────────────────────────────


class TestUpdateUser:

    async def test_update_fields_and_quota(self, db, test_user, test_admin):
        result = await UserService.update_user(
            db,
            test_user.id,
            UserUpdate(name="Alice A.", role=UserRole.admin, annual_leave_quota=22),
            Principal.from_user(test_admin),
        )
        assert result.name == "Alice A."
        assert result.role == UserRole.admin
        assert result.annual_leave_quota == 22
        assert result.remaining_leaves == Decimal("22")

    async def test_duplicate_email_conflicts(self, db, test_user, test_admin):
        with pytest.raises(ConflictError):
            await UserService.update_user(
                db,
                test_user.id,
                UserUpdate(email=test_admin.email),
                Principal.from_user(test_admin),
            )

    async def test_non_admin_forbidden(self, db, test_user):
        with pytest.raises(ForbiddenException):
            await UserService.update_user(
                db, test_user.id, UserUpdate(name="Hacker"), Principal.from_user(test_user),
            )


# ── Profile ─────────────────────────────────────────────────────────


class TestUpdateProfile:

    async def test_change_name_and_email(self, db, test_user):
        result = await UserService.update_profile(
            db,
            Principal.from_user(test_user),
            ProfileUpdate(name="Alice Renamed", email="Alice.New@Example.com"),
        )
        assert result.name == "Alice Renamed"
        assert result.email == "alice.new@example.com"
        assert result.remaining_leaves == Decimal("20")

    async def test_change_password(self, db, test_user, password):
        await UserService.update_profile(
            db,
            Principal.from_user(test_user),
            ProfileUpdate(current_password=password, new_password="brand-new-pw"),
        )
        await db.refresh(test_user)
        assert verify_password("brand-new-pw", test_user.password_hash)

    async def test_wrong_current_password(self, db, test_user):
        with pytest.raises(ValidationException) as exc_info:
            await UserService.update_profile(
                db,
                Principal.from_user(test_user),
                ProfileUpdate(current_password="not-it", new_password="brand-new-pw"),
            )
        assert "current_password" in exc_info.value.errors

    def test_new_password_requires_current(self):
        with pytest.raises(ValueError):
            ProfileUpdate(new_password="brand-new-pw")


# ── Reads ───────────────────────────────────────────────────────────


class TestReadUsers:

    async def test_admin_lists_users(self, db, test_user, test_admin):
        page = await UserService.list_users(
            db, Principal.from_user(test_admin), PaginationParams(page=1, page_size=50, sort=None),
        )
        assert page.meta.total == 2
        assert {u.email for u in page.data} == {test_user.email, test_admin.email}

    async def test_user_cannot_list(self, db, test_user):
        with pytest.raises(ForbiddenException):
            await UserService.list_users(
                db, Principal.from_user(test_user), PaginationParams(page=1, page_size=50, sort=None),
            )

    async def test_user_reads_only_self(self, db, test_user, test_admin):
        me = await UserService.get_user(db, test_user.id, Principal.from_user(test_user))
        assert me.id == test_user.id

        with pytest.raises(ForbiddenException):
            await UserService.get_user(db, test_admin.id, Principal.from_user(test_user))


# ── Deletion ────────────────────────────────────────────────────────


class TestDeleteUser:

    async def test_delete_cascades_to_requests_and_sessions(
        self, db, test_user, test_admin, headers_for,
    ):
        await headers_for(test_user)
        await _approve_five_days(db, test_user, Principal.from_user(test_admin))

        result = await UserService.delete_user(db, test_user.id, Principal.from_user(test_admin))

        assert result == {"message": "User deleted successfully"}
        leaves = await db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.user_id == test_user.id
            )
        )
        sessions = await db.execute(
            select(func.count()).select_from(UserSession).where(
                UserSession.user_id == test_user.id
            )
        )
        assert leaves.scalar_one() == 0
        assert sessions.scalar_one() == 0

        with pytest.raises(NotFoundException):
            await UserService.get_user(db, test_user.id, Principal.from_user(test_admin))

    async def test_non_admin_forbidden(self, db, test_user, test_admin):
        with pytest.raises(ForbiddenException):
            await UserService.delete_user(db, test_admin.id, Principal.from_user(test_user))


# ── API endpoints ───────────────────────────────────────────────────


class TestUsersAPI:

    async def test_admin_quota_update(self, client, test_user, admin_headers):
        resp = await client.put(
            f"/api/v1/users/{test_user.id}",
            json={"annual_leave_quota": 15},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["annual_leave_quota"] == 15
        assert Decimal(body["remaining_leaves"]) == Decimal("15")

    async def test_negative_quota_is_422(self, client, test_user, admin_headers):
        resp = await client.put(
            f"/api/v1/users/{test_user.id}",
            json={"annual_leave_quota": -3},
            headers=admin_headers,
        )
        assert resp.status_code == 422

    async def test_oversized_quota_is_422(self, client, test_user, admin_headers):
        resp = await client.put(
            f"/api/v1/users/{test_user.id}",
            json={"annual_leave_quota": 100000},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert "annual_leave_quota" in resp.json()["errors"]

    async def test_user_cannot_update_others(self, client, test_admin, user_headers):
        resp = await client.put(
            f"/api/v1/users/{test_admin.id}",
            json={"annual_leave_quota": 99},
            headers=user_headers,
        )
        assert resp.status_code == 403

    async def test_profile_route_is_not_an_id(self, client, user_headers):
        resp = await client.put(
            "/api/v1/users/profile", json={"name": "Alice P."}, headers=user_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Alice P."

    async def test_profile_wrong_password_is_422(self, client, user_headers):
        resp = await client.put(
            "/api/v1/users/profile",
            json={"current_password": "wrong", "new_password": "another-pw"},
            headers=user_headers,
        )
        assert resp.status_code == 422
        assert "current_password" in resp.json()["errors"]

    async def test_list_users_admin_only(self, client, user_headers, admin_headers):
        assert (await client.get("/api/v1/users", headers=user_headers)).status_code == 403

        resp = await client.get("/api/v1/users", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 2

    async def test_delete_user(self, client, test_user, admin_headers):
        resp = await client.delete(f"/api/v1/users/{test_user.id}", headers=admin_headers)
        assert resp.status_code == 200

        gone = await client.get(f"/api/v1/users/{test_user.id}", headers=admin_headers)
        assert gone.status_code == 404
