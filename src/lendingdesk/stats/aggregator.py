"""Loan statistics over configurable periods.

Provides period-bounded statistics about lending, including:
- New, returned, overdue and lost counts for a date range
- On-time return and overdue rates
- Comparison with the previous equivalent period
- Most borrowed resources and most active borrowers
- Status distribution and monthly trends

Nothing is cached; every call recomputes from the loan records.
"""

import calendar
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import LoanFilter, LoanRepository
from ..db.sqlite import Database, get_db
from ..errors import ValidationError
from ..loans.overdue import OverdueClassifier
from ..loans.schemas import OPEN_STATUSES, STATUS_COLORS, LoanStatus
from ..loans.validation import validate_date_range

logger = logging.getLogger(__name__)


class Period(str, Enum):
    """Named statistics period."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


CUSTOM_PERIOD = "custom"


@dataclass
class DateRange:
    """Half-open range [start, end)."""

    start: datetime
    end: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start <= moment < self.end


@dataclass
class PeriodStats:
    """Counts for the requested range."""

    period: str
    date_range: DateRange
    new_loans: int = 0
    returned_loans: int = 0
    overdue_loans: int = 0
    lost_resources: int = 0


@dataclass
class PreviousPeriod:
    """Counts for the range immediately before the requested one."""

    date_range: DateRange
    new_loans: int = 0
    returned_loans: int = 0
    change_percentage: Optional[float] = None  # None when previous had no loans


@dataclass
class TopResource:
    resource_id: str
    borrow_count: int
    title: Optional[str] = None
    author: Optional[str] = None


@dataclass
class TopBorrower:
    person_id: str
    borrow_count: int
    full_name: Optional[str] = None
    active_loans: int = 0
    overdue_loans: int = 0


@dataclass
class StatusShare:
    """Share of the range's loans in one status."""

    status: str
    count: int
    percentage: float
    color: str


@dataclass
class MonthlyTrend:
    """Counts for one calendar month of the range."""

    year: int
    month: int
    month_name: str
    new_loans: int = 0
    returned_loans: int = 0
    overdue_loans: int = 0


@dataclass
class LoanStatsSnapshot:
    """Statistics computed for one request."""

    total_loans: int = 0
    active_loans: int = 0
    overdue_loans: int = 0
    returned_loans: int = 0
    lost_resources: int = 0
    average_loan_duration: float = 0.0  # days
    on_time_return_rate: float = 0.0
    overdue_rate: float = 0.0
    period_stats: Optional[PeriodStats] = None
    comparison: Optional[PreviousPeriod] = None
    top_resources: list[TopResource] = field(default_factory=list)
    top_borrowers: list[TopBorrower] = field(default_factory=list)
    status_distribution: list[StatusShare] = field(default_factory=list)
    monthly_trends: Optional[list[MonthlyTrend]] = None


@dataclass
class _RangeCounts:
    """Core aggregation over one range."""

    in_range: list[Loan]
    returned: list[Loan]
    new_loans: int = 0
    returned_loans: int = 0
    returned_on_time: int = 0
    overdue_loans: int = 0
    lost_resources: int = 0
    total_duration_days: float = 0.0


# ============================================================================
# Period resolution
# ============================================================================


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift a first-of-month datetime by whole months."""
    index = moment.year * 12 + (moment.month - 1) + months
    return moment.replace(year=index // 12, month=index % 12 + 1, day=1)


def resolve_period(period: Period, now: datetime) -> DateRange:
    """Resolve a named period to the calendar unit containing ``now``."""
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == Period.TODAY:
        return DateRange(day_start, day_start + timedelta(days=1))
    if period == Period.WEEK:
        start = day_start - timedelta(days=day_start.weekday())
        return DateRange(start, start + timedelta(days=7))
    if period == Period.MONTH:
        start = day_start.replace(day=1)
        return DateRange(start, _add_months(start, 1))
    if period == Period.QUARTER:
        first_month = 3 * ((day_start.month - 1) // 3) + 1
        start = day_start.replace(month=first_month, day=1)
        return DateRange(start, _add_months(start, 3))
    start = day_start.replace(month=1, day=1)
    return DateRange(start, _add_months(start, 12))


def previous_range(period: str, current: DateRange) -> DateRange:
    """The equivalent range immediately before ``current``."""
    if period == Period.MONTH:
        return DateRange(_add_months(current.start, -1), current.start)
    if period == Period.QUARTER:
        return DateRange(_add_months(current.start, -3), current.start)
    if period == Period.YEAR:
        return DateRange(_add_months(current.start, -12), current.start)
    length = current.end - current.start
    return DateRange(current.start - length, current.start)


def month_buckets(date_range: DateRange) -> list[DateRange]:
    """Split a range into calendar-month sub-ranges."""
    buckets = []
    cursor = date_range.start.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    while cursor < date_range.end:
        next_month = _add_months(cursor, 1)
        buckets.append(
            DateRange(max(cursor, date_range.start), min(next_month, date_range.end))
        )
        cursor = next_month
    return buckets


def parse_period(value: Optional[str]) -> Period:
    """Parse a period keyword; defaults to month."""
    if value is None:
        return Period.MONTH
    try:
        return Period(value.strip().lower())
    except ValueError as exc:
        choices = ", ".join(p.value for p in Period)
        raise ValidationError(f"period must be one of: {choices}", field="period") from exc


def percentage_change(current: int, previous: int) -> Optional[float]:
    """Relative change in percent; None when there is no baseline."""
    if previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


# ============================================================================
# Aggregator
# ============================================================================


class LoanStatistics:
    """Computes loan statistics snapshots."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        config: Optional[Config] = None,
        classifier: Optional[OverdueClassifier] = None,
    ):
        """Initialize statistics.

        Args:
            db: Database instance
            clock: Clock used as "now"
            config: Configuration (top-N size, severity thresholds)
            classifier: Overdue classifier
        """
        self.db = db or get_db()
        self.clock = clock or get_clock()
        self.config = config or get_config()
        self.classifier = classifier or OverdueClassifier(self.config.severity_thresholds)
        self.loans = LoanRepository(self.db)

    def resolve_range(
        self,
        period: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> tuple[str, DateRange]:
        """Work out the label and range of a request.

        Explicit dates win over a period keyword when both are given.

        Raises:
            ValidationError: on a lone start/end date, end before start, or
                an unknown period keyword
        """
        explicit = validate_date_range(start_date, end_date)
        if explicit:
            return CUSTOM_PERIOD, DateRange(*explicit)
        resolved = parse_period(period)
        return resolved.value, resolve_period(resolved, self.clock.now())

    def _count_range(self, session: Session, date_range: DateRange, now: datetime) -> _RangeCounts:
        in_range = self.loans.find(
            LoanFilter(loan_date_from=date_range.start, loan_date_to=date_range.end),
            session=session,
        )
        returned = [loan for loan in in_range if loan.status == LoanStatus.RETURNED.value]

        counts = _RangeCounts(in_range=in_range, returned=returned)
        counts.new_loans = len(in_range)
        counts.returned_loans = len(returned)
        counts.overdue_loans = sum(1 for loan in in_range if self.classifier.is_overdue(loan, now))
        counts.lost_resources = sum(1 for loan in in_range if loan.status == LoanStatus.LOST.value)

        for loan in returned:
            if loan.returned_at <= loan.due_at:
                counts.returned_on_time += 1
            counts.total_duration_days += (
                loan.returned_at - loan.loaned_at
            ).total_seconds() / 86400
        return counts

    def compute_stats(
        self,
        period: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        include_trends: bool = False,
        include_details: bool = False,
    ) -> LoanStatsSnapshot:
        """Compute statistics for a period or explicit range.

        Args:
            period: today, week, month, quarter or year (default: month)
            start_date: Explicit range start, requires end_date
            end_date: Explicit range end (exclusive), requires start_date
            include_trends: Add one bucket per calendar month of the range
            include_details: Add titles, names and per-borrower counts to top lists

        Returns:
            LoanStatsSnapshot
        """
        label, date_range = self.resolve_range(period, start_date, end_date)
        now = self.clock.now()

        with self.db.get_session() as session:
            counts = self._count_range(session, date_range, now)
            open_loans = self.loans.find(LoanFilter(statuses=OPEN_STATUSES), session=session)
            previous = self._count_range(session, previous_range(label, date_range), now)
            trends = (
                [self._trend(session, bucket, now) for bucket in month_buckets(date_range)]
                if include_trends
                else None
            )

        overdue_now = [loan for loan in open_loans if self.classifier.is_overdue(loan, now)]
        active_now = len(open_loans) - len(overdue_now)

        snapshot = LoanStatsSnapshot(
            total_loans=counts.new_loans,
            active_loans=active_now,
            overdue_loans=len(overdue_now),
            returned_loans=counts.returned_loans,
            lost_resources=counts.lost_resources,
            average_loan_duration=(
                round(counts.total_duration_days / counts.returned_loans, 2)
                if counts.returned_loans else 0.0
            ),
            on_time_return_rate=(
                round(counts.returned_on_time / counts.returned_loans, 4)
                if counts.returned_loans else 0.0
            ),
            overdue_rate=(
                round(len(overdue_now) / len(open_loans), 4) if open_loans else 0.0
            ),
            period_stats=PeriodStats(
                period=label,
                date_range=date_range,
                new_loans=counts.new_loans,
                returned_loans=counts.returned_loans,
                overdue_loans=counts.overdue_loans,
                lost_resources=counts.lost_resources,
            ),
            comparison=PreviousPeriod(
                date_range=previous_range(label, date_range),
                new_loans=previous.new_loans,
                returned_loans=previous.returned_loans,
                change_percentage=percentage_change(counts.new_loans, previous.new_loans),
            ),
            top_resources=self._top_resources(counts.in_range, include_details),
            top_borrowers=self._top_borrowers(
                counts.in_range, open_loans, now, include_details
            ),
            status_distribution=self._status_distribution(counts.in_range, now),
            monthly_trends=trends,
        )

        logger.debug(
            "Stats %s [%s, %s): %d loans, %d returned",
            label, date_range.start.isoformat(), date_range.end.isoformat(),
            snapshot.total_loans, snapshot.returned_loans,
        )
        return snapshot

    def _trend(self, session: Session, bucket: DateRange, now: datetime) -> MonthlyTrend:
        counts = self._count_range(session, bucket, now)
        return MonthlyTrend(
            year=bucket.start.year,
            month=bucket.start.month,
            month_name=calendar.month_name[bucket.start.month],
            new_loans=counts.new_loans,
            returned_loans=counts.returned_loans,
            overdue_loans=counts.overdue_loans,
        )

    @staticmethod
    def _ranked(counter: Counter, limit: int) -> list[tuple[str, int]]:
        # Highest count first, identifier ascending on ties
        return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:limit]

    def _top_resources(self, loans: list[Loan], include_details: bool) -> list[TopResource]:
        counter = Counter(loan.resource_id for loan in loans)
        resources = {loan.resource_id: loan.resource for loan in loans}

        top = []
        for resource_id, count in self._ranked(counter, self.config.top_n):
            entry = TopResource(resource_id=resource_id, borrow_count=count)
            resource = resources.get(resource_id)
            if include_details and resource is not None:
                entry.title = resource.title
                entry.author = resource.author
            top.append(entry)
        return top

    def _top_borrowers(
        self,
        loans: list[Loan],
        open_loans: list[Loan],
        now: datetime,
        include_details: bool,
    ) -> list[TopBorrower]:
        counter = Counter(loan.person_id for loan in loans)
        people = {loan.person_id: loan.person for loan in loans}

        top = []
        for person_id, count in self._ranked(counter, self.config.top_n):
            entry = TopBorrower(person_id=person_id, borrow_count=count)
            if include_details:
                held = [loan for loan in open_loans if loan.person_id == person_id]
                overdue = sum(1 for loan in held if self.classifier.is_overdue(loan, now))
                person = people.get(person_id)
                entry.full_name = person.full_name if person else None
                entry.active_loans = len(held) - overdue
                entry.overdue_loans = overdue
            top.append(entry)
        return top

    def _status_distribution(self, loans: list[Loan], now: datetime) -> list[StatusShare]:
        total = len(loans)
        counts = Counter(self.classifier.live_status(loan, now) for loan in loans)
        return [
            StatusShare(
                status=status.value,
                count=counts.get(status, 0),
                percentage=round(counts.get(status, 0) / total * 100, 2) if total else 0.0,
                color=STATUS_COLORS[status],
            )
            for status in LoanStatus
        ]
