"""Borrowing eligibility rules."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import (
    LoanRepository,
    PersonProvider,
    ResourceProvider,
    SqlPersonProvider,
    SqlResourceProvider,
)
from ..db.sqlite import Database, get_db
from .overdue import OverdueClassifier
from .schemas import (
    DenialReason,
    EligibilityDetails,
    EligibilityResult,
    LoanSummary,
)

logger = logging.getLogger(__name__)


class EligibilityEvaluator:
    """Decides whether a person may start a new loan.

    Checks run in a fixed order and stop at the first failure:

    1. the person is active
    2. the person has no active penalty
    3. the person has no overdue loans (classified live, not from the stored status)
    4. the person holds fewer open loans than their type allows
    5. the requested resource, if any, is available

    The evaluator never writes.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        classifier: Optional[OverdueClassifier] = None,
        persons: Optional[PersonProvider] = None,
        resources: Optional[ResourceProvider] = None,
        config: Optional[Config] = None,
    ):
        self.db = db or get_db()
        self.clock = clock or get_clock()
        self.config = config or get_config()
        self.classifier = classifier or OverdueClassifier(self.config.severity_thresholds)
        self.persons = persons or SqlPersonProvider(self.db, self.config.default_max_loans)
        self.resources = resources or SqlResourceProvider(self.db)
        self.loans = LoanRepository(self.db)

    def _summarize(self, loan: Loan, now: datetime) -> LoanSummary:
        return LoanSummary(
            id=loan.id,
            resource_id=loan.resource_id,
            resource_title=loan.resource.title if loan.resource else None,
            due_date=loan.due_at,
            status=self.classifier.live_status(loan, now),
            days_overdue=self.classifier.days_overdue(loan, now),
        )

    def can_borrow(
        self,
        person_id: str,
        resource_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> EligibilityResult:
        """Check whether a person may borrow.

        Args:
            person_id: Person ID
            resource_id: Resource the person wants, if known
            session: Optional session to join

        Returns:
            EligibilityResult; a denial is a normal result, not an exception

        Raises:
            NotFoundError: if the person or resource does not exist
        """
        if session:
            return self._evaluate(session, person_id, resource_id)
        with self.db.get_session() as s:
            return self._evaluate(s, person_id, resource_id)

    def _evaluate(
        self,
        session: Session,
        person_id: str,
        resource_id: Optional[str],
    ) -> EligibilityResult:
        now = self.clock.now()
        person = self.persons.get_person(person_id, session=session)

        if not person.active:
            return self._deny(person_id, DenialReason.PERSON_INACTIVE, EligibilityDetails(
                max_loans_allowed=person.max_loans,
            ))

        if person.has_penalty:
            return self._deny(person_id, DenialReason.ACTIVE_PENALTY, EligibilityDetails(
                max_loans_allowed=person.max_loans,
            ))

        open_loans = self.loans.find_open(person_id=person_id, session=session)
        overdue = [loan for loan in open_loans if self.classifier.is_overdue(loan, now)]
        details = EligibilityDetails(
            active_count=len(open_loans) - len(overdue),
            overdue_count=len(overdue),
            max_loans_allowed=person.max_loans,
        )

        if overdue:
            details.current_loans = [self._summarize(loan, now) for loan in open_loans]
            return self._deny(person_id, DenialReason.HAS_OVERDUE_LOANS, details)

        if len(open_loans) >= person.max_loans:
            details.current_loans = [self._summarize(loan, now) for loan in open_loans]
            return self._deny(person_id, DenialReason.LIMIT_REACHED, details)

        if resource_id is not None:
            resource = self.resources.get_resource(resource_id, session=session)
            held = self.loans.find_open(resource_id=resource_id, session=session)
            if not resource.available or held:
                return self._deny(person_id, DenialReason.RESOURCE_UNAVAILABLE, details)

        logger.debug(
            "Person %s may borrow (%d/%d open loans)",
            person_id, len(open_loans), person.max_loans,
        )
        return EligibilityResult(allowed=True, details=details)

    @staticmethod
    def _deny(
        person_id: str,
        reason: DenialReason,
        details: EligibilityDetails,
    ) -> EligibilityResult:
        logger.info("Borrowing denied for person %s: %s", person_id, reason.value)
        return EligibilityResult(allowed=False, reason=reason, details=details)
