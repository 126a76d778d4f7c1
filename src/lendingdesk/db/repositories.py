"""Record store and collaborator providers used by the lending engine.

Every method takes an optional session. When one is given the work joins
the caller's transaction; otherwise a short-lived session is opened, in the
same way as the helpers on ``Database``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clock import to_iso
from ..errors import ConflictError, NotFoundError
from .models import Loan, Person, Resource, utc_timestamp
from .sqlite import Database

logger = logging.getLogger(__name__)


# ============================================================================
# Providers
# ============================================================================


@dataclass
class PersonInfo:
    """Eligibility-relevant view of a person."""

    id: str
    full_name: str
    person_type: str
    active: bool
    max_loans: int
    has_penalty: bool
    grade: Optional[str] = None


@dataclass
class ResourceInfo:
    """Availability view of a resource."""

    id: str
    title: str
    availability: str

    @property
    def available(self) -> bool:
        return self.availability == "available"


class PersonProvider(ABC):
    """Read-only access to people."""

    @abstractmethod
    def get_person(self, person_id: str, session: Optional[Session] = None) -> PersonInfo:
        """Return a person or raise NotFoundError."""


class ResourceProvider(ABC):
    """Access to resource availability."""

    @abstractmethod
    def get_resource(self, resource_id: str, session: Optional[Session] = None) -> ResourceInfo:
        """Return a resource or raise NotFoundError."""

    @abstractmethod
    def set_availability(
        self,
        resource_id: str,
        state: str,
        expected: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> None:
        """Set availability, compare-and-set against ``expected`` when given."""


class SqlPersonProvider(PersonProvider):
    """Person provider backed by the people table."""

    def __init__(self, db: Database, default_max_loans: int = 3):
        self.db = db
        self.default_max_loans = default_max_loans

    def get_person(self, person_id: str, session: Optional[Session] = None) -> PersonInfo:
        def _get(s: Session) -> PersonInfo:
            person = s.get(Person, person_id)
            if person is None:
                raise NotFoundError("person", person_id)
            person_type = person.person_type
            return PersonInfo(
                id=person.id,
                full_name=person.full_name,
                person_type=person_type.name if person_type else "unknown",
                active=bool(person.active) and (person_type is None or person_type.active),
                max_loans=(
                    person_type.max_loans
                    if person_type and person_type.max_loans is not None
                    else self.default_max_loans
                ),
                has_penalty=bool(person.has_penalty),
                grade=person.grade,
            )

        if session:
            return _get(session)
        with self.db.get_session() as s:
            return _get(s)


class SqlResourceProvider(ResourceProvider):
    """Resource provider backed by the resources table."""

    def __init__(self, db: Database):
        self.db = db

    def get_resource(self, resource_id: str, session: Optional[Session] = None) -> ResourceInfo:
        def _get(s: Session) -> ResourceInfo:
            resource = s.get(Resource, resource_id)
            if resource is None:
                raise NotFoundError("resource", resource_id)
            return ResourceInfo(
                id=resource.id,
                title=resource.title,
                availability=resource.availability,
            )

        if session:
            return _get(session)
        with self.db.get_session() as s:
            return _get(s)

    def set_availability(
        self,
        resource_id: str,
        state: str,
        expected: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> None:
        def _set(s: Session) -> None:
            stmt = (
                update(Resource)
                .where(Resource.id == resource_id)
                .values(availability=state, updated_at=utc_timestamp())
            )
            if expected is not None:
                stmt = stmt.where(Resource.availability == expected)
            result = s.execute(stmt)

            if result.rowcount == 1:
                logger.debug("Resource %s availability -> %s", resource_id, state)
                return

            current = s.get(Resource, resource_id)
            if current is None:
                raise NotFoundError("resource", resource_id)
            raise ConflictError(
                f"Resource {resource_id} is '{current.availability}', expected '{expected}'",
                resource_id=resource_id,
            )

        if session:
            _set(session)
        else:
            with self.db.get_session() as s:
                _set(s)


# ============================================================================
# Loan record store
# ============================================================================


@dataclass
class LoanFilter:
    """Filter for loan queries. Unset fields do not restrict."""

    person_id: Optional[str] = None
    resource_id: Optional[str] = None
    statuses: Optional[tuple[str, ...]] = None
    loan_date_from: Optional[datetime] = None  # inclusive
    loan_date_to: Optional[datetime] = None  # exclusive
    due_date_from: Optional[datetime] = None  # inclusive
    due_date_to: Optional[datetime] = None  # inclusive
    due_before: Optional[datetime] = None  # exclusive
    return_date_from: Optional[datetime] = None  # inclusive
    return_date_to: Optional[datetime] = None  # inclusive


_SORT_COLUMNS = {
    "loan_date": Loan.loan_date,
    "due_date": Loan.due_date,
    "return_date": Loan.return_date,
    "created_at": Loan.created_at,
}


class LoanRepository:
    """Durable store of loan records."""

    def __init__(self, db: Database):
        self.db = db

    def _apply_filter(self, stmt, filters: Optional[LoanFilter]):
        if filters is None:
            return stmt
        if filters.person_id:
            stmt = stmt.where(Loan.person_id == filters.person_id)
        if filters.resource_id:
            stmt = stmt.where(Loan.resource_id == filters.resource_id)
        if filters.statuses:
            stmt = stmt.where(Loan.status.in_(filters.statuses))
        if filters.loan_date_from:
            stmt = stmt.where(Loan.loan_date >= to_iso(filters.loan_date_from))
        if filters.loan_date_to:
            stmt = stmt.where(Loan.loan_date < to_iso(filters.loan_date_to))
        if filters.due_date_from:
            stmt = stmt.where(Loan.due_date >= to_iso(filters.due_date_from))
        if filters.due_date_to:
            stmt = stmt.where(Loan.due_date <= to_iso(filters.due_date_to))
        if filters.due_before:
            stmt = stmt.where(Loan.due_date < to_iso(filters.due_before))
        if filters.return_date_from:
            stmt = stmt.where(Loan.return_date >= to_iso(filters.return_date_from))
        if filters.return_date_to:
            stmt = stmt.where(Loan.return_date <= to_iso(filters.return_date_to))
        return stmt

    def find(
        self,
        filters: Optional[LoanFilter] = None,
        sort_by: str = "loan_date",
        sort_order: str = "desc",
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> list[Loan]:
        """Find loans matching a filter.

        Args:
            filters: Loan filter
            sort_by: One of loan_date, due_date, return_date, created_at
            sort_order: asc or desc
            page: 1-based page, all rows when None
            page_size: Rows per page
            session: Optional session to join

        Returns:
            List of loans with person and resource loaded
        """

        def _find(s: Session) -> list[Loan]:
            column = _SORT_COLUMNS.get(sort_by, Loan.loan_date)
            ordering = column.asc() if sort_order == "asc" else column.desc()
            stmt = self._apply_filter(select(Loan), filters).order_by(ordering, Loan.id)
            if page is not None and page_size is not None:
                stmt = stmt.offset((page - 1) * page_size).limit(page_size)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _find(session)
        with self.db.get_session() as s:
            return _find(s)

    def count(self, filters: Optional[LoanFilter] = None, session: Optional[Session] = None) -> int:
        """Count loans matching a filter."""

        def _count(s: Session) -> int:
            stmt = self._apply_filter(select(func.count(Loan.id)), filters)
            return s.execute(stmt).scalar() or 0

        if session:
            return _count(session)
        with self.db.get_session() as s:
            return _count(s)

    def find_one(self, loan_id: str, session: Optional[Session] = None) -> Optional[Loan]:
        """Get a loan by ID, or None."""

        def _get(s: Session) -> Optional[Loan]:
            return s.get(Loan, loan_id)

        if session:
            return _get(session)
        with self.db.get_session() as s:
            return _get(s)

    def insert(self, loan: Loan, session: Optional[Session] = None) -> str:
        """Insert a loan.

        Raises:
            ConflictError: if the resource already carries an open loan

        Returns:
            The new loan id
        """

        def _insert(s: Session) -> str:
            s.add(loan)
            try:
                s.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    f"Resource {loan.resource_id} already has an open loan",
                    resource_id=loan.resource_id,
                ) from exc
            return loan.id

        if session:
            return _insert(session)
        with self.db.get_session() as s:
            return _insert(s)

    def update(
        self,
        loan_id: str,
        patch: dict[str, Any],
        session: Optional[Session] = None,
    ) -> Loan:
        """Apply a field patch to a loan.

        Raises:
            NotFoundError: if the loan does not exist
        """

        def _update(s: Session) -> Loan:
            loan = s.get(Loan, loan_id)
            if loan is None:
                raise NotFoundError("loan", loan_id)
            for field, value in patch.items():
                if isinstance(value, datetime):
                    value = to_iso(value)
                setattr(loan, field, value)
            loan.updated_at = utc_timestamp()
            s.flush()
            return loan

        if session:
            return _update(session)
        with self.db.get_session() as s:
            return _update(s)

    def find_open(
        self,
        person_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> list[Loan]:
        """Loans currently holding a resource, oldest due first."""
        filters = LoanFilter(
            person_id=person_id,
            resource_id=resource_id,
            statuses=("active", "overdue"),
        )
        return self.find(filters, sort_by="due_date", sort_order="asc", session=session)
