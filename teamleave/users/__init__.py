"""Users module — accounts, quotas and remaining leave balances."""

from teamleave.users.models import User

__all__ = ["User"]
