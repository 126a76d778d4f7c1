"""Lending manager: the entry point for loan operations."""

import logging
import math
from datetime import datetime
from typing import Optional

from ..clock import Clock, from_iso, get_clock
from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import (
    LoanFilter,
    LoanRepository,
    PersonProvider,
    ResourceProvider,
    SqlPersonProvider,
    SqlResourceProvider,
)
from ..db.sqlite import Database, get_db
from ..errors import DeniedError, LendingError, ValidationError
from .eligibility import EligibilityEvaluator
from .lifecycle import LoanStateMachine
from .overdue import FineSchedule, OverdueClassifier, OverdueService
from .schemas import (
    OPEN_STATUSES,
    BatchReturnItem,
    EligibilityResult,
    LendingLimits,
    LoanPage,
    LoanResponse,
    LoanStatus,
    ReturnResult,
)
from .validation import validate_date_range, validate_id, validate_paging

logger = logging.getLogger(__name__)


class LendingManager:
    """Manages resource lending operations."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        config: Optional[Config] = None,
        persons: Optional[PersonProvider] = None,
        resources: Optional[ResourceProvider] = None,
        fine_schedule: Optional[FineSchedule] = None,
    ):
        """Initialize lending manager.

        Args:
            db: Database instance
            clock: Clock used as "now"
            config: Lending policy configuration
            persons: Person provider (default: people table)
            resources: Resource provider (default: resources table)
            fine_schedule: Optional external fine policy for overdue statistics
        """
        self.db = db or get_db()
        self.clock = clock or get_clock()
        self.config = config or get_config()
        self.classifier = OverdueClassifier(self.config.severity_thresholds)
        self.persons = persons or SqlPersonProvider(self.db, self.config.default_max_loans)
        self.resources = resources or SqlResourceProvider(self.db)
        self.loans = LoanRepository(self.db)

        self.eligibility = EligibilityEvaluator(
            self.db, self.clock, self.classifier, self.persons, self.resources, self.config
        )
        self.lifecycle = LoanStateMachine(
            self.db, self.clock, self.config, self.classifier, self.resources
        )
        self.overdue = OverdueService(
            self.db, self.clock, self.classifier, fine_schedule, self.config
        )

    def to_response(self, loan: Loan) -> LoanResponse:
        """Build a response with live overdue classification."""
        now = self.clock.now()
        classification = self.classifier.classify(loan, now)
        return LoanResponse(
            id=loan.id,
            person_id=loan.person_id,
            resource_id=loan.resource_id,
            status=self.classifier.live_status(loan, now),
            loan_date=loan.loaned_at,
            due_date=loan.due_at,
            return_date=loan.returned_at,
            observations=loan.observations,
            is_overdue=classification.is_overdue,
            days_overdue=classification.days_overdue,
            severity=classification.severity,
            created_at=from_iso(loan.created_at),
            updated_at=from_iso(loan.updated_at),
            person_name=loan.person.full_name if loan.person else None,
            resource_title=loan.resource.title if loan.resource else None,
        )

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def can_borrow(self, person_id: str, resource_id: Optional[str] = None) -> EligibilityResult:
        """Check whether a person may borrow (optionally a given resource)."""
        person_id = validate_id(person_id, "person_id")
        if resource_id is not None:
            resource_id = validate_id(resource_id, "resource_id")
        return self.eligibility.can_borrow(person_id, resource_id)

    def limits(self) -> LendingLimits:
        """Get the configured lending policy."""
        return LendingLimits(
            default_max_loans=self.config.default_max_loans,
            loan_days=self.config.loan_days,
            max_renew_days=self.config.max_renew_days,
            severity=self.config.severity_thresholds,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def borrow(self, person_id: str, resource_id: str) -> LoanResponse:
        """Lend a resource to a person.

        Args:
            person_id: Borrower ID
            resource_id: Resource ID

        Returns:
            The created loan

        Raises:
            DeniedError: if the person may not borrow the resource
            ConflictError: if another request took the resource first
            NotFoundError: if the person or resource does not exist
        """
        result = self.can_borrow(person_id, resource_id)
        if not result.allowed:
            raise DeniedError(result.reason.value, details=result.details.model_dump())

        loan = self.lifecycle.create(person_id, resource_id)
        return self.to_response(loan)

    def return_loan(self, loan_id: str, observations: Optional[str] = None) -> ReturnResult:
        """Mark a loan as returned.

        Args:
            loan_id: Loan ID
            observations: Notes recorded with the return

        Returns:
            ReturnResult with lateness information
        """
        loan_id = validate_id(loan_id, "loan_id")
        outcome = self.lifecycle.return_loan(loan_id, observations)
        days = outcome.classification.days_overdue

        message = "Return recorded"
        if days:
            message += f" ({days} day{'s' if days > 1 else ''} late)"

        return ReturnResult(
            loan=self.to_response(outcome.loan),
            was_overdue=outcome.classification.is_overdue,
            days_overdue=days,
            message=message,
        )

    def return_batch(self, loan_ids: list[str]) -> list[BatchReturnItem]:
        """Return several loans; each succeeds or fails on its own."""
        results = []
        for loan_id in loan_ids:
            try:
                returned = self.return_loan(loan_id)
            except LendingError as exc:
                logger.warning("Batch return failed for loan %s: %s", loan_id, exc.message)
                results.append(BatchReturnItem(loan_id=loan_id, success=False, error=exc.message))
            else:
                results.append(
                    BatchReturnItem(loan_id=loan_id, success=True, message=returned.message)
                )
        return results

    def mark_lost(self, loan_id: str, observations: Optional[str] = None) -> LoanResponse:
        """Mark a loan's resource as lost."""
        loan_id = validate_id(loan_id, "loan_id")
        return self.to_response(self.lifecycle.mark_lost(loan_id, observations))

    def renew(self, loan_id: str, additional_days: int) -> LoanResponse:
        """Extend an active loan's due date."""
        loan_id = validate_id(loan_id, "loan_id")
        return self.to_response(self.lifecycle.renew(loan_id, additional_days))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> LoanResponse:
        """Get a loan by ID.

        Reading a loan past its due date stores its overdue status.

        Raises:
            NotFoundError: if the loan does not exist
        """
        loan_id = validate_id(loan_id, "loan_id")
        return self.to_response(self.lifecycle.touch(loan_id))

    def list_loans(
        self,
        person_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> LoanPage:
        """List loans with optional filters.

        Filtering by ``overdue`` or ``active`` uses the live status, so a loan
        past due is listed as overdue even if its stored status lags.

        Args:
            person_id: Filter by borrower
            resource_id: Filter by resource
            status: Filter by live status
            search: Case-insensitive text matched against borrower name or resource title
            date_from: Earliest loan date (inclusive)
            date_to: Latest loan date (exclusive)
            page: 1-based page number
            page_size: Loans per page

        Returns:
            LoanPage, newest loans first
        """
        validate_paging(page, page_size)
        if date_from is not None and date_to is not None:
            date_from, date_to = validate_date_range(date_from, date_to)
        filters = LoanFilter(
            person_id=validate_id(person_id, "person_id") if person_id else None,
            resource_id=validate_id(resource_id, "resource_id") if resource_id else None,
            loan_date_from=date_from,
            loan_date_to=date_to,
        )
        try:
            status = LoanStatus(status) if status else None
        except ValueError as exc:
            choices = ", ".join(s.value for s in LoanStatus)
            raise ValidationError(f"status must be one of: {choices}", field="status") from exc
        if status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE):
            filters.statuses = OPEN_STATUSES
        elif status:
            filters.statuses = (status.value,)

        responses = [self.to_response(loan) for loan in self.loans.find(filters)]
        if status:
            responses = [r for r in responses if r.status == status]
        needle = search.strip().lower() if search else ""
        if needle:
            responses = [
                r for r in responses
                if needle in (r.person_name or "").lower()
                or needle in (r.resource_title or "").lower()
            ]

        total = len(responses)
        start = (page - 1) * page_size
        return LoanPage(
            items=responses[start:start + page_size],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    def get_loan_history_for_person(self, person_id: str, limit: int = 50) -> list[LoanResponse]:
        """Most recent loans of a person."""
        filters = LoanFilter(person_id=validate_id(person_id, "person_id"))
        loans = self.loans.find(filters, page=1, page_size=limit)
        return [self.to_response(loan) for loan in loans]

    def get_loan_history_for_resource(
        self, resource_id: str, limit: int = 50
    ) -> list[LoanResponse]:
        """Most recent loans of a resource."""
        filters = LoanFilter(resource_id=validate_id(resource_id, "resource_id"))
        loans = self.loans.find(filters, page=1, page_size=limit)
        return [self.to_response(loan) for loan in loans]

    def get_pending_returns(self, limit: int = 50) -> list[LoanResponse]:
        """Open loans that are past due, longest overdue first."""
        now = self.clock.now()
        filters = LoanFilter(statuses=OPEN_STATUSES, due_before=now)
        loans = self.loans.find(filters, sort_by="due_date", sort_order="asc")
        overdue = [loan for loan in loans if self.classifier.is_overdue(loan, now)]
        return [self.to_response(loan) for loan in overdue[:limit]]

    def get_loans_due_soon(self, days: int = 3) -> list[LoanResponse]:
        """Open loans falling due within the next ``days`` days."""
        return [self.to_response(loan) for loan in self.overdue.loans_near_due(days)]

    def get_return_history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[LoanResponse]:
        """Returned loans, most recent return first.

        Args:
            start: Earliest return date (inclusive)
            end: Latest return date (inclusive)
            limit: Maximum number of loans

        Returns:
            List of returned loans
        """
        if start is not None and end is not None:
            start, end = validate_date_range(start, end)
        filters = LoanFilter(
            statuses=(LoanStatus.RETURNED.value,),
            return_date_from=start,
            return_date_to=end,
        )
        loans = self.loans.find(filters, sort_by="return_date", page=1, page_size=limit)
        logger.debug("Return history matched %d loans", len(loans))
        return [self.to_response(loan) for loan in loans]
