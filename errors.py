"""
errors.py
Exceptions raised by the data modules and shown to the user by app.py.
"""

from __future__ import annotations


class DonorDeskError(Exception):
    """Base class for errors that are safe to show to the user."""


class ValidationError(DonorDeskError):
    """Input failed one or more checks."""

    def __init__(self, issues: list[str] | str):
        if isinstance(issues, str):
            issues = [issues]
        self.issues = list(issues)
        super().__init__("; ".join(self.issues))


class NotFoundError(DonorDeskError):
    """A referenced row does not exist."""


class PermissionDenied(DonorDeskError):
    """The current identity may not perform the action."""


class CapacityExceeded(DonorDeskError):
    """The organization reached the member capacity of its subscription tier."""
