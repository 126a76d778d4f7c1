"""Loan state machine.

Transitions::

    active  -> returned   (terminal)
    active  -> overdue    (derived from the due date, undone only by return)
    overdue -> returned   (terminal)
    active | overdue -> lost   (terminal, administrative)

Every transition runs in one session: the loan write and the resource
availability change commit together or not at all.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..clock import Clock, get_clock, to_iso
from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import LoanRepository, ResourceProvider, SqlResourceProvider
from ..db.sqlite import Database, get_db
from ..errors import InvalidStateError, NotFoundError
from .overdue import OverdueClassifier
from .schemas import Availability, Classification, LoanStatus
from .validation import validate_renewal_days

logger = logging.getLogger(__name__)


@dataclass
class ReturnOutcome:
    """A returned loan and how late it came back."""

    loan: Loan
    classification: Classification


def _append_note(existing: Optional[str], label: str, note: Optional[str]) -> Optional[str]:
    if not note or not note.strip():
        return existing
    entry = f"[{label}]: {note.strip()}"
    return f"{existing.strip()}\n{entry}" if existing and existing.strip() else entry


class LoanStateMachine:
    """Applies lifecycle transitions to single loans."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        config: Optional[Config] = None,
        classifier: Optional[OverdueClassifier] = None,
        resources: Optional[ResourceProvider] = None,
    ):
        self.db = db or get_db()
        self.clock = clock or get_clock()
        self.config = config or get_config()
        self.classifier = classifier or OverdueClassifier(self.config.severity_thresholds)
        self.resources = resources or SqlResourceProvider(self.db)
        self.loans = LoanRepository(self.db)

    def _get(self, session: Session, loan_id: str) -> Loan:
        loan = self.loans.find_one(loan_id, session=session)
        if loan is None:
            raise NotFoundError("loan", loan_id)
        return loan

    def _materialize(self, session: Session, loan: Loan) -> Loan:
        """Store the overdue status of an active loan past its due date."""
        now = self.clock.now()
        if loan.status == LoanStatus.ACTIVE.value and self.classifier.is_overdue(loan, now):
            loan = self.loans.update(
                loan.id, {"status": LoanStatus.OVERDUE.value}, session=session
            )
            logger.info("Loan %s marked overdue", loan.id)
        return loan

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create(self, person_id: str, resource_id: str) -> Loan:
        """Open a loan. Eligibility must already have been granted.

        Args:
            person_id: Borrower ID
            resource_id: Resource ID

        Returns:
            Created loan

        Raises:
            ConflictError: if the resource was taken concurrently
            NotFoundError: if the resource does not exist
        """
        now = self.clock.now()
        with self.db.get_session() as session:
            self.resources.set_availability(
                resource_id,
                Availability.BORROWED.value,
                expected=Availability.AVAILABLE.value,
                session=session,
            )
            loan = Loan(
                person_id=person_id,
                resource_id=resource_id,
                status=LoanStatus.ACTIVE.value,
                loan_date=to_iso(now),
                due_date=to_iso(now + timedelta(days=self.config.loan_days)),
            )
            loan_id = self.loans.insert(loan, session=session)

        logger.info(
            "Loan %s created: person %s, resource %s, due %s",
            loan_id, person_id, resource_id, loan.due_date,
        )
        return self.loans.find_one(loan_id)

    def return_loan(self, loan_id: str, observations: Optional[str] = None) -> ReturnOutcome:
        """Close a loan and release its resource.

        Raises:
            NotFoundError: if the loan does not exist
            InvalidStateError: if the loan is already returned or lost
        """
        now = self.clock.now()
        with self.db.get_session() as session:
            loan = self._get(session, loan_id)
            if not loan.is_open:
                raise InvalidStateError(loan_id, loan.status, "return")

            classification = self.classifier.classify(loan, now)
            loan = self.loans.update(
                loan_id,
                {
                    "status": LoanStatus.RETURNED.value,
                    "return_date": now,
                    "observations": _append_note(loan.observations, "RETURN", observations),
                },
                session=session,
            )
            self.resources.set_availability(
                loan.resource_id, Availability.AVAILABLE.value, session=session
            )

        logger.info(
            "Loan %s returned%s",
            loan_id,
            f" {classification.days_overdue} day(s) late" if classification.is_overdue else "",
        )
        return ReturnOutcome(loan=loan, classification=classification)

    def mark_lost(self, loan_id: str, observations: Optional[str] = None) -> Loan:
        """Declare the resource of an open loan lost.

        Raises:
            NotFoundError: if the loan does not exist
            InvalidStateError: if the loan is already returned or lost
        """
        with self.db.get_session() as session:
            loan = self._get(session, loan_id)
            if not loan.is_open:
                raise InvalidStateError(loan_id, loan.status, "mark lost")

            loan = self.loans.update(
                loan_id,
                {
                    "status": LoanStatus.LOST.value,
                    "observations": _append_note(loan.observations, "LOST", observations),
                },
                session=session,
            )
            self.resources.set_availability(
                loan.resource_id, Availability.LOST.value, session=session
            )

        logger.warning("Loan %s marked lost, resource %s", loan_id, loan.resource_id)
        return loan

    def renew(self, loan_id: str, additional_days: int) -> Loan:
        """Extend the due date of an active loan.

        Overdue loans cannot be renewed; they leave the overdue state only
        by being returned.

        Raises:
            ValidationError: if additional_days is out of bounds
            NotFoundError: if the loan does not exist
            InvalidStateError: if the loan is not active
        """
        validate_renewal_days(additional_days, self.config.max_renew_days)
        now = self.clock.now()
        with self.db.get_session() as session:
            loan = self._get(session, loan_id)
            live = self.classifier.live_status(loan, now)
            if live != LoanStatus.ACTIVE:
                raise InvalidStateError(loan_id, live.value, "renew")

            loan = self.loans.update(
                loan_id,
                {"due_date": loan.due_at + timedelta(days=additional_days)},
                session=session,
            )

        logger.info("Loan %s renewed by %d day(s), due %s", loan_id, additional_days, loan.due_date)
        return loan

    def touch(self, loan_id: str) -> Loan:
        """Read a loan, storing its overdue status if it has gone past due.

        Raises:
            NotFoundError: if the loan does not exist
        """
        with self.db.get_session() as session:
            loan = self._get(session, loan_id)
            return self._materialize(session, loan)
