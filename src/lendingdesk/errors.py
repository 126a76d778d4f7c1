"""Exceptions raised by the lending engine.

A denied borrow request is an expected business outcome and is reported
as an ``EligibilityResult`` with ``allowed=False``. ``DeniedError`` is only
raised where an operation cannot continue past that outcome, such as
``LendingManager.borrow``.
"""

from typing import Any, Optional


class LendingError(Exception):
    """Base exception for all lending engine errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(LendingError):
    """Raised when request input is malformed (ids, ranges, periods)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message=message, details={"field": field})
        self.field = field


class NotFoundError(LendingError):
    """Raised when a loan, person or resource id is unknown."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(LendingError):
    """Raised when a concurrent write broke the one-open-loan-per-resource rule."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message=message, details={"resource_id": resource_id})
        self.resource_id = resource_id


class InvalidStateError(LendingError):
    """Raised on an illegal loan transition."""

    def __init__(self, loan_id: str, current: str, action: str):
        super().__init__(
            message=f"Cannot {action} loan {loan_id} in status '{current}'",
            details={"loan_id": loan_id, "status": current, "action": action},
        )
        self.loan_id = loan_id
        self.current = current
        self.action = action


class DeniedError(LendingError):
    """Raised when a borrow cannot proceed because eligibility was denied."""

    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message=f"Borrowing denied: {reason}", details=details)
        self.reason = reason
