"""Overdue classification and reporting.

Overdue state is derived from the due date at read time. The stored
``status`` column may still say ``active`` for a loan past its due date;
everything here classifies against the clock instead of trusting it.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..clock import Clock, get_clock
from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import LoanFilter, LoanRepository
from ..db.sqlite import Database, get_db
from ..errors import ValidationError
from .schemas import (
    OPEN_STATUSES,
    Classification,
    GradeCount,
    LoanStatus,
    OverdueFilter,
    OverduePage,
    OverdueRecord,
    OverdueSortField,
    OverdueStats,
    Severity,
    SeverityThresholds,
    SortOrder,
)
from .validation import validate_paging

logger = logging.getLogger(__name__)

# Fine schedule hook: maps an overdue record to an amount owed
FineSchedule = Callable[[OverdueRecord], float]

SECONDS_PER_DAY = 86400


def whole_days_between(start: datetime, end: datetime) -> int:
    """Days from start to end, a started day counting as a whole one.

    Negative or zero when end is not after start.
    """
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def severity_for(days_overdue: int, thresholds: SeverityThresholds) -> Optional[Severity]:
    """Map days overdue to a severity tier; None when not overdue."""
    if days_overdue < 1:
        return None
    if days_overdue >= thresholds.critical:
        return Severity.CRITICAL
    if days_overdue >= thresholds.high:
        return Severity.HIGH
    if days_overdue >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW


class OverdueClassifier:
    """Pure overdue classification of single loans."""

    def __init__(self, thresholds: Optional[SeverityThresholds] = None):
        self.thresholds = thresholds or SeverityThresholds()

    def days_overdue(self, loan: Loan, now: datetime) -> int:
        """Days past due for an open loan, 0 otherwise."""
        if loan.status not in OPEN_STATUSES:
            return 0
        return max(0, whole_days_between(loan.due_at, now))

    def classify(self, loan: Loan, now: datetime) -> Classification:
        days = self.days_overdue(loan, now)
        return Classification(days_overdue=days, severity=severity_for(days, self.thresholds))

    def is_overdue(self, loan: Loan, now: datetime) -> bool:
        return self.days_overdue(loan, now) > 0

    def live_status(self, loan: Loan, now: datetime) -> LoanStatus:
        """Status of the loan as of ``now``."""
        if loan.status in OPEN_STATUSES:
            return LoanStatus.OVERDUE if self.is_overdue(loan, now) else LoanStatus.ACTIVE
        return LoanStatus(loan.status)


class OverdueService:
    """Bulk overdue queries and statistics."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        classifier: Optional[OverdueClassifier] = None,
        fine_schedule: Optional[FineSchedule] = None,
        config: Optional[Config] = None,
    ):
        """Initialize overdue service.

        Args:
            db: Database instance
            clock: Clock used as "now"
            classifier: Overdue classifier (default: configured thresholds)
            fine_schedule: Optional external fine policy; amounts are 0 without one
            config: Configuration the default classifier reads
        """
        self.db = db or get_db()
        self.clock = clock or get_clock()
        self.config = config or get_config()
        self.classifier = classifier or OverdueClassifier(self.config.severity_thresholds)
        self.fine_schedule = fine_schedule
        self.loans = LoanRepository(self.db)

    def _to_record(self, loan: Loan, now: datetime) -> OverdueRecord:
        classification = self.classifier.classify(loan, now)
        person = loan.person
        return OverdueRecord(
            id=loan.id,
            person_id=loan.person_id,
            person_name=person.full_name if person else "",
            person_type=person.person_type.name if person and person.person_type else None,
            grade=person.grade if person else None,
            resource_id=loan.resource_id,
            resource_title=loan.resource.title if loan.resource else "",
            loan_date=loan.loaned_at,
            due_date=loan.due_at,
            stored_status=LoanStatus(loan.status),
            days_overdue=classification.days_overdue,
            severity=classification.severity,
        )

    def _overdue_records(
        self,
        filters: Optional[OverdueFilter] = None,
    ) -> list[OverdueRecord]:
        """All currently overdue loans as records, filtered."""
        now = self.clock.now()
        filters = filters or OverdueFilter()

        store_filter = LoanFilter(
            person_id=filters.person_id,
            resource_id=filters.resource_id,
            statuses=OPEN_STATUSES,
            due_date_from=filters.due_date_from,
            due_date_to=filters.due_date_to,
            due_before=now,
        )
        loans = self.loans.find(store_filter, sort_by="due_date", sort_order="asc")

        records = [
            self._to_record(loan, now)
            for loan in loans
            if self.classifier.is_overdue(loan, now)
        ]

        return [r for r in records if self._matches(r, filters)]

    @staticmethod
    def _matches(record: OverdueRecord, filters: OverdueFilter) -> bool:
        if filters.search:
            needle = filters.search.strip().lower()
            if (
                needle not in record.person_name.lower()
                and needle not in record.resource_title.lower()
            ):
                return False
        if filters.person_type and record.person_type != filters.person_type.value:
            return False
        if filters.min_days_overdue and record.days_overdue < filters.min_days_overdue:
            return False
        if filters.grade and record.grade != filters.grade.strip():
            return False
        return True

    @staticmethod
    def _sort_key(sort_by: OverdueSortField):
        if sort_by == OverdueSortField.DUE_DATE:
            return lambda r: (r.due_date, r.id)
        if sort_by == OverdueSortField.LOAN_DATE:
            return lambda r: (r.loan_date, r.id)
        if sort_by == OverdueSortField.PERSON_NAME:
            return lambda r: (r.person_name.lower(), r.id)
        if sort_by == OverdueSortField.RESOURCE_TITLE:
            return lambda r: (r.resource_title.lower(), r.id)
        return lambda r: (r.days_overdue, r.id)

    def list_overdue(
        self,
        filters: Optional[OverdueFilter] = None,
        page: int = 1,
        page_size: int = 10,
        sort_by: Optional[OverdueSortField] = None,
        sort_order: Optional[SortOrder] = None,
    ) -> OverduePage:
        """List overdue loans.

        Args:
            filters: Overdue filters
            page: 1-based page number
            page_size: Records per page
            sort_by: Sort field (default: days overdue)
            sort_order: Sort direction (default: descending)

        Returns:
            OverduePage with classification computed as of now
        """
        validate_paging(page, page_size)
        try:
            sort_by = OverdueSortField(sort_by or OverdueSortField.DAYS_OVERDUE)
        except ValueError as exc:
            choices = ", ".join(f.value for f in OverdueSortField)
            raise ValidationError(f"sort_by must be one of: {choices}", field="sort_by") from exc
        try:
            sort_order = SortOrder(sort_order or SortOrder.DESC)
        except ValueError as exc:
            raise ValidationError("sort_order must be asc or desc", field="sort_order") from exc

        records = self._overdue_records(filters)
        records.sort(key=self._sort_key(sort_by), reverse=sort_order == SortOrder.DESC)

        total = len(records)
        logger.debug("Overdue listing matched %d loans", total)
        start = (page - 1) * page_size
        return OverduePage(
            items=records[start:start + page_size],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    def overdue_stats(self) -> OverdueStats:
        """Aggregate statistics over all currently overdue loans."""
        records = self._overdue_records()
        stats = OverdueStats(total_overdue=len(records))
        if not records:
            return stats

        grades: dict[str, int] = {}
        for record in records:
            stats.by_severity[record.severity.value] += 1
            if record.person_type in stats.by_person_type:
                stats.by_person_type[record.person_type] += 1
            elif record.person_type:
                stats.by_person_type[record.person_type] = 1
            if record.grade:
                grades[record.grade] = grades.get(record.grade, 0) + 1

        stats.average_days_overdue = round(
            sum(r.days_overdue for r in records) / len(records), 2
        )
        if self.fine_schedule is not None:
            stats.total_overdue_amount = round(
                sum(self.fine_schedule(r) for r in records), 2
            )
        stats.by_grade = [GradeCount(grade=g, count=c) for g, c in sorted(grades.items())]

        # Most days overdue wins; earliest loan date breaks ties
        stats.oldest_overdue = min(
            records, key=lambda r: (-r.days_overdue, r.loan_date, r.id)
        )
        stats.recent_overdue = sorted(
            records, key=lambda r: (r.due_date, r.id), reverse=True
        )[:5]
        return stats

    def loans_near_due(self, days: int = 3) -> list[Loan]:
        """Open loans that fall due within the next ``days`` days.

        Args:
            days: Number of days to look ahead

        Returns:
            List of loans, soonest due first
        """
        now = self.clock.now()
        store_filter = LoanFilter(
            statuses=OPEN_STATUSES,
            due_date_from=now,
            due_date_to=now + timedelta(days=days),
        )
        return self.loans.find(store_filter, sort_by="due_date", sort_order="asc")

