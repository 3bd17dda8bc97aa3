"""Team Leave — leave requests, approvals and balance accounting."""
