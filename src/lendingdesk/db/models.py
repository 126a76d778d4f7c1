"""SQLAlchemy ORM models for the lending database.

Tables:
- person_types: Borrower categories and their concurrent loan limits
- people: Borrowers (read-only to the lending engine)
- resources: Lendable items and their availability
- loan_statuses: Reference vocabulary for loan status labels
- loans: Individual loan records
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..clock import from_iso


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_timestamp() -> str:
    """Audit timestamp for created_at / updated_at columns."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class PersonType(Base):
    """Borrower category - student or teacher."""

    __tablename__ = "person_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    max_loans: Mapped[int] = mapped_column(Integer, default=3)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<PersonType(name='{self.name}', max_loans={self.max_loans})>"


class Person(Base):
    """Person model - someone who may borrow resources."""

    __tablename__ = "people"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    document_number: Mapped[Optional[str]] = mapped_column(String(30), index=True)
    grade: Mapped[Optional[str]] = mapped_column(String(20))  # students only

    person_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("person_types.id"),
        nullable=False,
        index=True,
    )

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    has_penalty: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    # Relationships
    person_type: Mapped["PersonType"] = relationship("PersonType", lazy="joined")

    def __repr__(self) -> str:
        return f"<Person(id={self.id}, name='{self.full_name}')>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Resource(Base):
    """Resource model - a lendable book, game or map."""

    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[Optional[str]] = mapped_column(String(500))
    kind: Mapped[str] = mapped_column(String(20), default="book")  # book / game / map

    # available / borrowed / lost
    availability: Mapped[str] = mapped_column(String(20), default="available", index=True)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, title='{self.title}', availability={self.availability})>"


class LoanStatusDefinition(Base):
    """Loan status vocabulary entry, seeded at startup."""

    __tablename__ = "loan_statuses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    color: Mapped[str] = mapped_column(String(7), default="#007bff")
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    def __repr__(self) -> str:
        return f"<LoanStatusDefinition(name='{self.name}')>"


class Loan(Base):
    """Loan model - one resource lent to one person."""

    __tablename__ = "loans"
    __table_args__ = (
        # A resource may carry at most one open loan
        Index(
            "uq_loans_open_resource",
            "resource_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'overdue')"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    person_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("people.id"),
        nullable=False,
        index=True,
    )
    resource_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("resources.id"),
        nullable=False,
        index=True,
    )

    # Status: active / returned / overdue / lost
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)

    # Dates (ISO-8601 UTC)
    loan_date: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    due_date: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    return_date: Mapped[Optional[str]] = mapped_column(String(32))

    observations: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    # Relationships
    person: Mapped["Person"] = relationship("Person", lazy="joined")
    resource: Mapped["Resource"] = relationship("Resource", lazy="joined")

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, resource_id={self.resource_id}, status={self.status})>"

    @property
    def loaned_at(self) -> datetime:
        return from_iso(self.loan_date)

    @property
    def due_at(self) -> datetime:
        return from_iso(self.due_date)

    @property
    def returned_at(self) -> Optional[datetime]:
        return from_iso(self.return_date)

    @property
    def is_open(self) -> bool:
        """Check if the loan still holds its resource."""
        return self.status in ("active", "overdue")
