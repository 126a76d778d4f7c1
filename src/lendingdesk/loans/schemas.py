"""Pydantic schemas for the lending engine."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class LoanStatus(str, Enum):
    """Status of a loan."""

    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"


# Statuses that hold the resource
OPEN_STATUSES = (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)

# Presentation colors per status
STATUS_COLORS = {
    LoanStatus.ACTIVE: "#007bff",  # Blue
    LoanStatus.RETURNED: "#28a745",  # Green
    LoanStatus.OVERDUE: "#ffc107",  # Yellow
    LoanStatus.LOST: "#dc3545",  # Red
}


class Availability(str, Enum):
    """Availability state of a resource."""

    AVAILABLE = "available"
    BORROWED = "borrowed"
    LOST = "lost"


class PersonType(str, Enum):
    """Borrower category."""

    STUDENT = "student"
    TEACHER = "teacher"


class Severity(str, Enum):
    """How overdue a loan is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DenialReason(str, Enum):
    """Why a borrow request was denied."""

    PERSON_INACTIVE = "person inactive"
    ACTIVE_PENALTY = "active penalty"
    HAS_OVERDUE_LOANS = "has overdue loans"
    LIMIT_REACHED = "limit reached"
    RESOURCE_UNAVAILABLE = "resource unavailable"


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class OverdueSortField(str, Enum):
    """Sortable fields of an overdue listing."""

    DAYS_OVERDUE = "days_overdue"
    DUE_DATE = "due_date"
    LOAN_DATE = "loan_date"
    PERSON_NAME = "person_name"
    RESOURCE_TITLE = "resource_title"


class SeverityThresholds(BaseModel):
    """Inclusive lower bounds, in days overdue, of the upper severity tiers.

    Anything from 1 day up to ``medium`` is ``low``.
    """

    medium: int = 7
    high: int = 15
    critical: int = 30

    @model_validator(mode="after")
    def ascending(self):
        """Validate that tiers do not overlap."""
        if not 1 < self.medium < self.high < self.critical:
            raise ValueError("severity thresholds must be strictly ascending and above 1")
        return self


class Classification(BaseModel):
    """Live overdue classification of a loan."""

    days_overdue: int = 0
    severity: Optional[Severity] = None

    @property
    def is_overdue(self) -> bool:
        return self.days_overdue > 0


# ============================================================================
# Loans
# ============================================================================


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: str
    person_id: str
    resource_id: str
    status: LoanStatus  # live status, overdue derived from due date
    loan_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    observations: Optional[str] = None
    is_overdue: bool = False
    days_overdue: int = 0
    severity: Optional[Severity] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Related data (populated by manager)
    person_name: Optional[str] = None
    resource_title: Optional[str] = None


class LoanSummary(BaseModel):
    """Short view of a current loan, used in eligibility details."""

    id: str
    resource_id: str
    resource_title: Optional[str] = None
    due_date: datetime
    status: LoanStatus
    days_overdue: int = 0


class ReturnResult(BaseModel):
    """Outcome of returning a loan."""

    loan: LoanResponse
    was_overdue: bool
    days_overdue: int
    message: str


class BatchReturnItem(BaseModel):
    """Per-loan outcome of a batch return."""

    loan_id: str
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class LoanPage(BaseModel):
    """Paginated list of loans."""

    items: list[LoanResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class LendingLimits(BaseModel):
    """Configured lending policy."""

    default_max_loans: int
    loan_days: int
    min_renew_days: int = 1
    max_renew_days: int
    severity: SeverityThresholds


# ============================================================================
# Eligibility
# ============================================================================


class EligibilityDetails(BaseModel):
    """Counts and current loans backing an eligibility decision."""

    active_count: int = 0
    overdue_count: int = 0
    max_loans_allowed: int = 0
    current_loans: list[LoanSummary] = Field(default_factory=list)


class EligibilityResult(BaseModel):
    """Result of a can-borrow check."""

    allowed: bool
    reason: Optional[DenialReason] = None
    details: EligibilityDetails = Field(default_factory=EligibilityDetails)


# ============================================================================
# Overdue
# ============================================================================


class OverdueFilter(BaseModel):
    """Filters for an overdue listing."""

    search: Optional[str] = None  # person name or resource title
    person_id: Optional[str] = None
    resource_id: Optional[str] = None
    due_date_from: Optional[datetime] = None
    due_date_to: Optional[datetime] = None
    person_type: Optional[PersonType] = None
    min_days_overdue: Optional[int] = Field(None, ge=1, le=365)
    grade: Optional[str] = None


class OverdueRecord(BaseModel):
    """An overdue loan with its classification computed at query time."""

    id: str
    person_id: str
    person_name: str
    person_type: Optional[str] = None
    grade: Optional[str] = None
    resource_id: str
    resource_title: str
    loan_date: datetime
    due_date: datetime
    stored_status: LoanStatus
    days_overdue: int
    severity: Severity


class OverduePage(BaseModel):
    """Paginated overdue listing."""

    items: list[OverdueRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class GradeCount(BaseModel):
    """Overdue count for a grade."""

    grade: str
    count: int


class OverdueStats(BaseModel):
    """Aggregate view over all currently overdue loans."""

    total_overdue: int = 0
    total_overdue_amount: float = 0.0
    average_days_overdue: float = 0.0
    by_severity: dict[str, int] = Field(
        default_factory=lambda: {s.value: 0 for s in Severity}
    )
    by_person_type: dict[str, int] = Field(
        default_factory=lambda: {t.value: 0 for t in PersonType}
    )
    by_grade: list[GradeCount] = Field(default_factory=list)
    oldest_overdue: Optional[OverdueRecord] = None
    recent_overdue: list[OverdueRecord] = Field(default_factory=list)
