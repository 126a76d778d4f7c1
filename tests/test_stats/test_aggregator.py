"""Tests for loan statistics."""

from datetime import datetime, timedelta, timezone

import pytest

from lendingdesk.errors import ValidationError
from lendingdesk.stats.aggregator import (
    DateRange,
    LoanStatsSnapshot,
    Period,
    month_buckets,
    percentage_change,
    previous_range,
    resolve_period,
)

from tests.conftest import NOW


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestPeriods:
    """Tests for period resolution."""

    @pytest.mark.parametrize(
        "period,start,end",
        [
            (Period.TODAY, utc(2026, 3, 18), utc(2026, 3, 19)),
            (Period.WEEK, utc(2026, 3, 16), utc(2026, 3, 23)),
            (Period.MONTH, utc(2026, 3, 1), utc(2026, 4, 1)),
            (Period.QUARTER, utc(2026, 1, 1), utc(2026, 4, 1)),
            (Period.YEAR, utc(2026, 1, 1), utc(2027, 1, 1)),
        ],
    )
    def test_resolve(self, period, start, end):
        """Test each period resolves to the calendar unit containing now."""
        date_range = resolve_period(period, NOW)
        assert (date_range.start, date_range.end) == (start, end)

    def test_december_rolls_into_next_year(self):
        """Test month and quarter ends cross the year boundary."""
        now = utc(2026, 12, 5, 8)
        assert resolve_period(Period.MONTH, now).end == utc(2027, 1, 1)
        assert resolve_period(Period.QUARTER, now).start == utc(2026, 10, 1)

    def test_previous_month_crosses_year(self):
        """Test the month before January is December of the prior year."""
        january = DateRange(utc(2026, 1, 1), utc(2026, 2, 1))
        previous = previous_range("month", january)
        assert (previous.start, previous.end) == (utc(2025, 12, 1), utc(2026, 1, 1))

    def test_previous_custom_same_length(self):
        """Test a custom range compares against a window of equal length."""
        current = DateRange(utc(2026, 3, 10), utc(2026, 3, 17))
        previous = previous_range("custom", current)
        assert (previous.start, previous.end) == (utc(2026, 3, 3), utc(2026, 3, 10))

    def test_month_buckets(self):
        """Test a range splits into calendar-month sub-ranges."""
        buckets = month_buckets(DateRange(utc(2026, 1, 15), utc(2026, 3, 10)))

        assert [(b.start, b.end) for b in buckets] == [
            (utc(2026, 1, 15), utc(2026, 2, 1)),
            (utc(2026, 2, 1), utc(2026, 3, 1)),
            (utc(2026, 3, 1), utc(2026, 3, 10)),
        ]

    def test_month_bucket_ends_on_boundary(self):
        """Test a range ending on a month start adds no empty bucket."""
        buckets = month_buckets(DateRange(utc(2026, 3, 1), utc(2026, 4, 1)))
        assert len(buckets) == 1

    def test_percentage_change(self):
        """Test change percentage and the undefined case."""
        assert percentage_change(5, 2) == 150.0
        assert percentage_change(1, 4) == -75.0
        assert percentage_change(3, 0) is None


class TestEmptyStats:
    """Tests for statistics with no loans."""

    def test_month_with_no_loans(self, statistics):
        """Test an empty month returns zeros and empty lists."""
        snapshot = statistics.compute_stats(period="month")

        assert isinstance(snapshot, LoanStatsSnapshot)
        assert snapshot.total_loans == 0
        assert snapshot.active_loans == 0
        assert snapshot.overdue_loans == 0
        assert snapshot.returned_loans == 0
        assert snapshot.lost_resources == 0
        assert snapshot.average_loan_duration == 0.0
        assert snapshot.on_time_return_rate == 0.0
        assert snapshot.overdue_rate == 0.0
        assert snapshot.top_resources == []
        assert snapshot.top_borrowers == []
        assert snapshot.monthly_trends is None
        assert snapshot.comparison.new_loans == 0
        assert snapshot.comparison.change_percentage is None
        assert [(s.status, s.count, s.percentage) for s in snapshot.status_distribution] == [
            ("active", 0, 0.0),
            ("returned", 0, 0.0),
            ("overdue", 0, 0.0),
            ("lost", 0, 0.0),
        ]

    def test_default_period_is_month(self, statistics):
        """Test the period defaults to the current month."""
        snapshot = statistics.compute_stats()

        assert snapshot.period_stats.period == "month"
        assert snapshot.period_stats.date_range.start == utc(2026, 3, 1)


class TestValidation:
    """Tests for invalid statistics requests."""

    def test_unknown_period(self, statistics):
        """Test an unknown period keyword is rejected."""
        with pytest.raises(ValidationError):
            statistics.compute_stats(period="decade")

    def test_lone_start(self, statistics):
        """Test a start date without an end date is rejected."""
        with pytest.raises(ValidationError):
            statistics.compute_stats(start_date=utc(2026, 3, 1))

    def test_end_before_start(self, statistics):
        """Test an inverted range is rejected."""
        with pytest.raises(ValidationError):
            statistics.compute_stats(start_date=utc(2026, 3, 5), end_date=utc(2026, 3, 1))

    def test_period_keyword_case(self, statistics):
        """Test period keywords are case-insensitive."""
        snapshot = statistics.compute_stats(period="WEEK")
        assert snapshot.period_stats.period == "week"


class TestStats:
    """Tests for statistics over a populated store."""

    @pytest.fixture
    def loans(self, student, teacher, make_resource, make_loan):
        """Five loans in March, two in February and one open since February."""
        ids = {}
        ids["on_time"] = make_loan(
            student, make_resource(title="Alpha"), utc(2026, 3, 2),
            return_date=utc(2026, 3, 10), status="returned",
        )
        ids["late"] = make_loan(
            student, make_resource(title="Bravo"), utc(2026, 3, 1, 12),
            due_date=utc(2026, 3, 2, 12), return_date=utc(2026, 3, 5, 12), status="returned",
        )
        ids["active"] = make_loan(teacher, make_resource(title="Charlie"), utc(2026, 3, 10))
        ids["overdue"] = make_loan(
            teacher, make_resource(title="Delta"), utc(2026, 3, 1, 9),
            due_date=utc(2026, 3, 3, 9),
        )
        ids["lost"] = make_loan(student, make_resource(title="Echo"), utc(2026, 3, 5), status="lost")

        make_loan(
            student, make_resource(title="Foxtrot"), utc(2026, 2, 10),
            return_date=utc(2026, 2, 20), status="returned",
        )
        make_loan(
            teacher, make_resource(title="Golf"), utc(2026, 2, 15),
            return_date=utc(2026, 2, 25), status="returned",
        )
        ids["february_open"] = make_loan(student, make_resource(title="Hotel"), utc(2026, 2, 27))
        return ids

    def test_core_counts(self, statistics, loans):
        """Test range counts and point-in-time snapshots."""
        snapshot = statistics.compute_stats(period="month")

        assert snapshot.total_loans == 5
        assert snapshot.returned_loans == 2
        assert snapshot.lost_resources == 1
        # Open loans anywhere: Charlie active, Delta and Hotel overdue
        assert snapshot.active_loans == 1
        assert snapshot.overdue_loans == 2

    def test_rates(self, statistics, loans):
        """Test derived rates and the average duration."""
        snapshot = statistics.compute_stats(period="month")

        assert snapshot.on_time_return_rate == 0.5
        assert snapshot.overdue_rate == pytest.approx(2 / 3, abs=1e-4)
        assert snapshot.average_loan_duration == 6.0
        assert 0.0 <= snapshot.on_time_return_rate <= 1.0
        assert 0.0 <= snapshot.overdue_rate <= 1.0

    def test_period_stats(self, statistics, loans):
        """Test the period block."""
        period_stats = statistics.compute_stats(period="month").period_stats

        assert period_stats.period == "month"
        assert period_stats.new_loans == 5
        assert period_stats.returned_loans == 2
        assert period_stats.overdue_loans == 1
        assert period_stats.lost_resources == 1

    def test_comparison(self, statistics, loans):
        """Test the comparison against February."""
        comparison = statistics.compute_stats(period="month").comparison

        assert comparison.date_range.start == utc(2026, 2, 1)
        assert comparison.new_loans == 3
        assert comparison.returned_loans == 2
        assert comparison.change_percentage == pytest.approx(66.67)

    def test_status_distribution(self, statistics, loans):
        """Test status shares use live classification."""
        snapshot = statistics.compute_stats(period="month")
        shares = {s.status: (s.count, s.percentage, s.color) for s in snapshot.status_distribution}

        assert shares == {
            "active": (1, 20.0, "#007bff"),
            "returned": (2, 40.0, "#28a745"),
            "overdue": (1, 20.0, "#ffc107"),
            "lost": (1, 20.0, "#dc3545"),
        }

    def test_top_resources_ties_by_id(self, statistics, loans):
        """Test equal counts are ordered by identifier."""
        top = statistics.compute_stats(period="month").top_resources

        assert [t.borrow_count for t in top] == [1] * 5
        assert [t.resource_id for t in top] == sorted(t.resource_id for t in top)
        assert all(t.title is None for t in top)

    def test_top_n_from_config(self, db, clock, loans):
        """Test the top list size is configurable."""
        from lendingdesk.stats.aggregator import LoanStatistics

        from tests.conftest import make_config

        statistics = LoanStatistics(db, clock=clock, config=make_config(top_n=2))
        snapshot = statistics.compute_stats(period="month")

        assert len(snapshot.top_resources) == 2
        assert len(snapshot.top_borrowers) == 2

    def test_top_borrowers(self, statistics, student, teacher, loans):
        """Test borrowers ranked by loan count in range."""
        top = statistics.compute_stats(period="month").top_borrowers

        assert [(t.person_id, t.borrow_count) for t in top] == [(student, 3), (teacher, 2)]
        assert top[0].full_name is None

    def test_details(self, statistics, student, teacher, loans):
        """Test details add names, titles and open loan counts."""
        snapshot = statistics.compute_stats(period="month", include_details=True)
        borrowers = {t.person_id: t for t in snapshot.top_borrowers}

        assert borrowers[student].full_name == "Ana Lopez"
        assert (borrowers[student].active_loans, borrowers[student].overdue_loans) == (0, 1)
        assert borrowers[teacher].full_name == "Carlos Ruiz"
        assert (borrowers[teacher].active_loans, borrowers[teacher].overdue_loans) == (1, 1)
        assert {t.title for t in snapshot.top_resources} == {
            "Alpha", "Bravo", "Charlie", "Delta", "Echo"
        }

    def test_explicit_range(self, statistics, loans):
        """Test explicit dates override the period."""
        snapshot = statistics.compute_stats(
            period="year", start_date=utc(2026, 3, 1), end_date=utc(2026, 3, 8)
        )

        assert snapshot.period_stats.period == "custom"
        assert snapshot.total_loans == 4
        assert snapshot.comparison.date_range.start == utc(2026, 2, 22)
        assert snapshot.comparison.new_loans == 1

    def test_monthly_trends(self, statistics, loans):
        """Test one trend bucket per calendar month of the quarter."""
        trends = statistics.compute_stats(period="quarter", include_trends=True).monthly_trends

        assert [(t.year, t.month, t.month_name) for t in trends] == [
            (2026, 1, "January"),
            (2026, 2, "February"),
            (2026, 3, "March"),
        ]
        assert [(t.new_loans, t.returned_loans, t.overdue_loans) for t in trends] == [
            (0, 0, 0),
            (3, 2, 1),
            (5, 2, 1),
        ]

    def test_stats_do_not_write(self, statistics, manager, loans):
        """Test statistics leave stored statuses alone."""
        statistics.compute_stats(period="month", include_trends=True, include_details=True)
        assert manager.loans.find_one(loans["overdue"]).status == "active"
