"""Leave router — apply, list, calendar, approve/reject, delete.

All endpoints require authentication. Status changes are admin-only;
deletion is open to the request's owner and to admins.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.auth.dependencies import get_current_principal
from teamleave.auth.policies import Principal
from teamleave.common.constants import LeaveStatus
from teamleave.common.pagination import PaginatedResponse, PaginationParams
from teamleave.database import get_db
from teamleave.leave.schemas import (
    LeaveCalendarOut,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveStatusUpdate,
)
from teamleave.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── GET / — list leave requests ─────────────────────────────────────

@router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def list_leaves(
    status: Optional[LeaveStatus] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None, description="Admin only: filter by owner"),
    params: PaginationParams = Depends(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """All requests for admins, the caller's own otherwise. Newest first."""
    return await LeaveService.list_leaves(
        db, principal, params, status=status, user_id=user_id,
    )


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar", response_model=LeaveCalendarOut)
async def leave_calendar(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1970, le=9999),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Team calendar: approved and pending leave overlapping the month."""
    return await LeaveService.get_leave_calendar(db, month, year)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave(db, request_id, principal)


# ── POST / — apply ──────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=201)
async def apply_leave(
    body: LeaveRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. The balance is checked now but only deducted on approval."""
    return await LeaveService.apply_leave(db, principal.id, body)


# ── PUT /{id} — approve / reject ────────────────────────────────────

@router.put("/{request_id}", response_model=LeaveRequestOut)
async def set_leave_status(
    request_id: uuid.UUID,
    body: LeaveStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Admin: move a request to approved or rejected; the balance follows."""
    return await LeaveService.set_leave_status(db, request_id, body.status, principal)


# ── DELETE /{id} ────────────────────────────────────────────────────

@router.delete("/{request_id}")
async def delete_leave(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Delete a request; approved days are returned to the owner first."""
    return await LeaveService.delete_leave(db, request_id, principal)
