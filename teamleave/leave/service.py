"""Leave service layer — day counts, applications, approval workflow, deletion.

Business logic:
  - Inclusive calendar-day count, halved for half-day leave
  - Application checks the balance but deducts nothing while pending
  - Status transitions move the owner's balance according to _LEDGER_EFFECT;
    the request row and the user row change in one transaction, with the
    user row locked so transitions for the same user serialize
  - Deleting an approved request gives its days back before removal
  - Team calendar view of approved and pending leave
"""

from __future__ import annotations

import logging
import uuid
from calendar import monthrange
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from teamleave.auth.policies import (
    Principal,
    authorize,
    can_delete_leave,
    can_set_leave_status,
    can_view_leave,
    has_permission,
)
from teamleave.common.audit import create_audit_entry
from teamleave.common.constants import (
    UNKNOWN_USER_EMAIL,
    UNKNOWN_USER_NAME,
    LeaveStatus,
    LeaveType,
)
from teamleave.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from teamleave.common.pagination import PaginatedResponse, PaginationParams, paginate
from teamleave.config import settings
from teamleave.leave.models import LeaveRequest
from teamleave.leave.schemas import (
    LeaveCalendarEntry,
    LeaveCalendarOut,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from teamleave.users.models import User
from teamleave.users.schemas import UserBrief

logger = logging.getLogger(__name__)


# Sign applied to number_of_days for each (old, new) status pair.
# Pairs not listed (including every same-status pair) leave the ledger alone.
_LEDGER_EFFECT: dict[tuple[LeaveStatus, LeaveStatus], int] = {
    (LeaveStatus.pending, LeaveStatus.approved): -1,
    (LeaveStatus.pending, LeaveStatus.rejected): 0,
    (LeaveStatus.approved, LeaveStatus.rejected): +1,
    (LeaveStatus.rejected, LeaveStatus.approved): -1,
}


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: apply, transition, delete, list, calendar."""

    # ─────────────────────────────────────────────────────────────────
    # Day count
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def calculate_leave_days(
        start_date: date,
        end_date: date,
        leave_type: LeaveType,
    ) -> Decimal:
        """Inclusive calendar days between the two dates, halved for half-day.

        The distance is absolute, so swapped dates count the same as the
        ordered pair.  No rounding after halving (3 days half → 1.5).
        """
        days = Decimal(abs((end_date - start_date).days) + 1)
        if leave_type == LeaveType.half:
            days = days / 2
        return days

    @staticmethod
    def ledger_delta(
        old_status: LeaveStatus,
        new_status: LeaveStatus,
        number_of_days: Decimal,
    ) -> Decimal:
        """Change to remaining_leaves caused by moving old_status → new_status."""
        return _LEDGER_EFFECT.get((old_status, new_status), 0) * number_of_days

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        with_owner: bool = False,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if with_owner:
            query = query.options(selectinload(LeaveRequest.owner))
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_req

    @staticmethod
    async def _lock_for_ledger(
        db: AsyncSession,
        leave_req: LeaveRequest,
    ) -> tuple[LeaveRequest, User]:
        """Lock the owner row, then re-read the request under that lock.

        Returns fresh (request, owner).  The status re-read matters: another
        transaction may have transitioned the request between our first
        read and acquiring the lock.
        """
        user_result = await db.execute(
            select(User)
            .where(User.id == leave_req.user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = user_result.scalars().first()
        if user is None:
            raise NotFoundException("User", str(leave_req.user_id))

        req_result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == leave_req.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        fresh = req_result.scalars().first()
        if fresh is None:
            raise NotFoundException("LeaveRequest", str(leave_req.id))
        return fresh, user

    @staticmethod
    def _build_user_brief(user: Optional[User], user_id: uuid.UUID) -> UserBrief:
        if user is None:
            return UserBrief(id=user_id, name=UNKNOWN_USER_NAME, email=UNKNOWN_USER_EMAIL)
        return UserBrief(id=user.id, name=user.name, email=user.email)

    @staticmethod
    def _build_request_response(
        req: LeaveRequest,
        *,
        owner: Optional[User] = None,
    ) -> LeaveRequestOut:
        """Build LeaveRequestOut from ORM, enriching with the owner when known.

        A loaded-but-missing owner yields the "Unknown User" placeholder; an
        owner that was never loaded leaves ``user`` unset rather than
        triggering a lazy load.
        """
        out = LeaveRequestOut.model_validate(req)
        if owner is not None:
            out.user = LeaveService._build_user_brief(owner, req.user_id)
        elif "owner" not in inspect(req).unloaded:
            out.user = LeaveService._build_user_brief(req.owner, req.user_id)
        return out

    # ─────────────────────────────────────────────────────────────────
    # Apply Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        user_id: uuid.UUID,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """Submit a leave request in ``pending`` status.

        Fails with InsufficientBalanceException when the user's remaining
        balance cannot cover the request; nothing is persisted then.  The
        balance itself is untouched until approval.
        """
        if data.end_date < data.start_date:
            logger.warning(
                "Leave application by %s has end_date %s before start_date %s; "
                "counting the absolute distance",
                user_id, data.end_date, data.start_date,
            )

        number_of_days = LeaveService.calculate_leave_days(
            data.start_date, data.end_date, data.leave_type,
        )

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))

        if user.remaining_leaves < number_of_days:
            logger.warning(
                "Leave application by %s refused: %s requested, %s remaining",
                user_id, number_of_days, user.remaining_leaves,
            )
            raise InsufficientBalanceException(
                available=user.remaining_leaves, requested=number_of_days,
            )

        leave_request = LeaveRequest(
            user_id=user_id,
            start_date=data.start_date,
            end_date=data.end_date,
            leave_type=data.leave_type,
            status=LeaveStatus.pending,
            reason=data.reason or "",
            number_of_days=number_of_days,
        )
        db.add(leave_request)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=user_id,
            new_values={
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "leave_type": data.leave_type.value,
                "number_of_days": str(number_of_days),
                "status": LeaveStatus.pending.value,
            },
        )
        logger.info(
            "Leave request %s submitted by %s (%s day(s))",
            leave_request.id, user_id, number_of_days,
        )

        return LeaveService._build_request_response(leave_request, owner=user)

    # ─────────────────────────────────────────────────────────────────
    # Status Transition
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def set_leave_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        new_status: LeaveStatus,
        actor: Principal,
    ) -> LeaveRequestOut:
        """Move a request to ``new_status`` and apply the matching ledger effect.

        Same-status calls are no-ops.  A transition that deducts days is
        refused with InsufficientBalanceException if it would take the
        balance below zero, unless ALLOW_NEGATIVE_BALANCE is set.
        """
        authorize(
            can_set_leave_status(actor),
            "Only administrators can approve or reject leave.",
        )

        leave_req = await LeaveService._get_request(db, request_id)
        leave_req, user = await LeaveService._lock_for_ledger(db, leave_req)

        old_status = leave_req.status
        if old_status == new_status:
            return LeaveService._build_request_response(leave_req, owner=user)

        if new_status == LeaveStatus.pending:
            raise ValidationException(
                {"status": [
                    f"A {old_status.value} leave request cannot be moved back to pending."
                ]}
            )

        delta = LeaveService.ledger_delta(old_status, new_status, leave_req.number_of_days)
        new_balance = user.remaining_leaves + delta
        if delta < 0 and new_balance < 0 and not settings.ALLOW_NEGATIVE_BALANCE:
            logger.warning(
                "Refusing %s -> %s on %s: balance %s cannot cover %s day(s)",
                old_status.value, new_status.value, leave_req.id,
                user.remaining_leaves, leave_req.number_of_days,
            )
            raise InsufficientBalanceException(
                available=user.remaining_leaves, requested=leave_req.number_of_days,
            )

        now = datetime.now(timezone.utc)
        old_balance = user.remaining_leaves

        # Both writes flush together and commit or roll back as one unit
        leave_req.status = new_status
        leave_req.reviewed_by = actor.id
        leave_req.reviewed_at = now
        leave_req.updated_at = now
        if delta:
            user.remaining_leaves = new_balance
            user.updated_at = now

        await db.flush()

        await create_audit_entry(
            db,
            action="approve" if new_status == LeaveStatus.approved else "reject",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.id,
            old_values={
                "status": old_status.value,
                "remaining_leaves": str(old_balance),
            },
            new_values={
                "status": new_status.value,
                "remaining_leaves": str(user.remaining_leaves),
            },
        )
        logger.info(
            "Leave request %s %s -> %s by %s; balance of %s %s -> %s",
            leave_req.id, old_status.value, new_status.value, actor.id,
            user.id, old_balance, user.remaining_leaves,
        )

        return LeaveService._build_request_response(leave_req, owner=user)

    # ─────────────────────────────────────────────────────────────────
    # Delete Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def delete_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> dict:
        """Delete a request (admin or owner). Approved days go back first."""
        leave_req = await LeaveService._get_request(db, request_id)
        authorize(
            can_delete_leave(actor, leave_req),
            "You can only delete your own leave requests.",
        )

        leave_req, user = await LeaveService._lock_for_ledger(db, leave_req)

        old_balance = user.remaining_leaves
        old_status = leave_req.status
        restored = LeaveService.ledger_delta(
            old_status, LeaveStatus.rejected, leave_req.number_of_days,
        ) if old_status == LeaveStatus.approved else Decimal("0")

        if restored:
            user.remaining_leaves = old_balance + restored
            user.updated_at = datetime.now(timezone.utc)

        await db.delete(leave_req)
        await db.flush()

        await create_audit_entry(
            db,
            action="delete",
            entity_type="leave_request",
            entity_id=request_id,
            actor_id=actor.id,
            old_values={
                "status": old_status.value,
                "number_of_days": str(leave_req.number_of_days),
                "remaining_leaves": str(old_balance),
            },
            new_values={"remaining_leaves": str(user.remaining_leaves)},
        )
        logger.info(
            "Leave request %s (%s) deleted by %s; %s day(s) restored",
            request_id, old_status.value, actor.id, restored,
        )

        return {"message": "Leave deleted successfully"}

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> LeaveRequestOut:
        """Get one request — admins see any, users only their own."""
        leave_req = await LeaveService._get_request(db, request_id, with_owner=True)
        authorize(can_view_leave(actor, leave_req))
        return LeaveService._build_request_response(leave_req)

    @staticmethod
    async def list_leaves(
        db: AsyncSession,
        actor: Principal,
        params: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """List requests newest first — every request for admins, own ones otherwise."""
        query = (
            select(LeaveRequest)
            .options(selectinload(LeaveRequest.owner))
            .order_by(LeaveRequest.created_at.desc())
        )

        if has_permission(actor, "leave:read_all"):
            if user_id:
                query = query.where(LeaveRequest.user_id == user_id)
        else:
            query = query.where(LeaveRequest.user_id == actor.id)

        if status:
            query = query.where(LeaveRequest.status == status)

        rows, meta = await paginate(db, query, params, model=LeaveRequest)
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveService._build_request_response(r) for r in rows],
            meta=meta,
        )

    # ─────────────────────────────────────────────────────────────────
    # Leave Calendar
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_calendar(
        db: AsyncSession,
        month: int,
        year: int,
    ) -> LeaveCalendarOut:
        """Approved and pending leave overlapping the given month, by start date."""
        if not 1 <= month <= 12:
            raise ValidationException({"month": ["Month must be between 1 and 12."]})

        _, last_day = monthrange(year, month)
        month_start = date(year, month, 1)
        month_end = date(year, month, last_day)

        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.status.in_([LeaveStatus.approved, LeaveStatus.pending]),
                LeaveRequest.start_date <= month_end,
                LeaveRequest.end_date >= month_start,
            )
            .options(selectinload(LeaveRequest.owner))
            .order_by(LeaveRequest.start_date)
        )
        requests = result.scalars().all()

        entries = [
            LeaveCalendarEntry(
                id=req.id,
                user=LeaveService._build_user_brief(req.owner, req.user_id),
                start_date=req.start_date,
                end_date=req.end_date,
                leave_type=req.leave_type,
                number_of_days=req.number_of_days,
                status=req.status,
            )
            for req in requests
        ]

        return LeaveCalendarOut(
            month=month,
            year=year,
            entries=entries,
            total_entries=len(entries),
        )
