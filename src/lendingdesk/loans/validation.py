"""Structural validation of request values.

These checks cover the shape of inputs only (ids, ranges, paging).
Business rules live in the eligibility evaluator and the state machine.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from ..clock import ensure_utc
from ..errors import ValidationError


def validate_id(value: Optional[str], field: str = "id") -> str:
    """Check that an identifier is a UUID string.

    Returns:
        The identifier in canonical lowercase form
    """
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required", field=field)
    try:
        return str(UUID(value.strip()))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value}", field=field) from exc


def validate_date_range(
    start: Optional[datetime],
    end: Optional[datetime],
) -> Optional[tuple[datetime, datetime]]:
    """Check an explicit start/end pair.

    Returns:
        ``None`` when neither bound is given, otherwise the UTC pair

    Raises:
        ValidationError: if only one bound is given or end precedes start
    """
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValidationError(
            "start_date and end_date must be given together",
            field="start_date" if start is None else "end_date",
        )
    start, end = ensure_utc(start), ensure_utc(end)
    if end < start:
        raise ValidationError("end_date must not be before start_date", field="end_date")
    return start, end


def validate_paging(page: int, page_size: int, max_page_size: int = 100) -> None:
    """Check page number and size."""
    if page < 1:
        raise ValidationError("page must be at least 1", field="page")
    if not 1 <= page_size <= max_page_size:
        raise ValidationError(
            f"page_size must be between 1 and {max_page_size}", field="page_size"
        )


def validate_renewal_days(days: int, max_days: int) -> int:
    """Check the number of days a renewal adds."""
    if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= max_days:
        raise ValidationError(
            f"additional_days must be between 1 and {max_days}", field="additional_days"
        )
    return days
