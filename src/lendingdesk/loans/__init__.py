"""Loan lifecycle and eligibility engine.

Provides functionality for:
- Deciding whether a person may borrow a resource
- Opening, returning, renewing and losing loans
- Live overdue classification by severity
- Overdue listings and statistics
"""

from .eligibility import EligibilityEvaluator
from .lifecycle import LoanStateMachine
from .manager import LendingManager
from .overdue import OverdueClassifier, OverdueService
from .schemas import (
    Availability,
    DenialReason,
    EligibilityResult,
    LoanResponse,
    LoanStatus,
    OverdueFilter,
    OverdueStats,
    Severity,
    SeverityThresholds,
)

__all__ = [
    "EligibilityEvaluator",
    "LoanStateMachine",
    "LendingManager",
    "OverdueClassifier",
    "OverdueService",
    "Availability",
    "DenialReason",
    "EligibilityResult",
    "LoanResponse",
    "LoanStatus",
    "OverdueFilter",
    "OverdueStats",
    "Severity",
    "SeverityThresholds",
]
