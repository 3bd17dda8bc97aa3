"""Leave module — requests, approval workflow and the team calendar."""

from teamleave.leave.models import LeaveRequest

__all__ = ["LeaveRequest"]
