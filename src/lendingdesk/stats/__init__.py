"""Loan statistics and trends."""

from .aggregator import (
    DateRange,
    LoanStatistics,
    LoanStatsSnapshot,
    MonthlyTrend,
    Period,
    PeriodStats,
    PreviousPeriod,
    StatusShare,
    TopBorrower,
    TopResource,
)

__all__ = [
    "DateRange",
    "LoanStatistics",
    "LoanStatsSnapshot",
    "MonthlyTrend",
    "Period",
    "PeriodStats",
    "PreviousPeriod",
    "StatusShare",
    "TopBorrower",
    "TopResource",
]
