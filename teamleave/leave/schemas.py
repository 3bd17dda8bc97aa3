"""Request bodies and responses for the leave endpoints."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from teamleave.common.constants import LeaveStatus, LeaveType
from teamleave.users.schemas import UserBrief


class LeaveRequestCreate(BaseModel):
    """Body of ``POST /leaves``.

    Both dates are inclusive. An ``end_date`` earlier than ``start_date`` is
    accepted and counted by absolute distance.
    """

    start_date: date
    end_date: date
    leave_type: LeaveType = LeaveType.full
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveStatusUpdate(BaseModel):
    status: LeaveStatus


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    start_date: date
    end_date: date
    leave_type: LeaveType
    status: LeaveStatus
    reason: str = ""
    # Fixed when the request is submitted
    number_of_days: Decimal
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Owner summary, or the "Unknown User" placeholder
    user: Optional[UserBrief] = None


class LeaveCalendarEntry(BaseModel):
    id: uuid.UUID
    user: UserBrief
    start_date: date
    end_date: date
    leave_type: LeaveType
    number_of_days: Decimal
    status: LeaveStatus


class LeaveCalendarOut(BaseModel):
    """Approved and pending leave overlapping one calendar month."""

    month: int
    year: int
    entries: list[LeaveCalendarEntry]
    total_entries: int = 0
