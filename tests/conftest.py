"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the lending engine: an
in-memory database, a frozen clock, test configuration and factories
for people, resources and loans.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest
from sqlalchemy import update

from lendingdesk.clock import FixedClock, to_iso
from lendingdesk.config import Config, reset_config
from lendingdesk.db.models import Loan, Person, PersonType, Resource
from lendingdesk.db.sqlite import Database, reset_db
from lendingdesk.loans.manager import LendingManager
from lendingdesk.stats.aggregator import LoanStatistics

# Wednesday, mid-March
NOW = datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)


def make_config(**overrides) -> Config:
    """Build a test configuration with the default lending policy."""
    values = dict(
        db_path=Path(":memory:"),
        env="test",
        log_level="DEBUG",
        loan_days=15,
        default_max_loans=3,
        max_renew_days=30,
        severity_medium=7,
        severity_high=15,
        severity_critical=30,
        top_n=5,
    )
    values.update(overrides)
    return Config(**values)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_globals():
    """Keep global singletons from leaking between tests."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at NOW."""
    return FixedClock(NOW)


@pytest.fixture
def config() -> Config:
    """Test configuration."""
    return make_config()


@pytest.fixture
def manager(db, clock, config) -> LendingManager:
    """Create a LendingManager with test database and clock."""
    return LendingManager(db, clock=clock, config=config)


@pytest.fixture
def statistics(db, clock, config) -> LoanStatistics:
    """Create a LoanStatistics with test database and clock."""
    return LoanStatistics(db, clock=clock, config=config)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def person_types(db) -> dict[str, str]:
    """Create the student and teacher person types."""
    ids = {}
    with db.get_session() as session:
        for name, max_loans in (("student", 3), ("teacher", 5)):
            person_type = PersonType(
                name=name,
                description=f"{name.capitalize()} borrower",
                max_loans=max_loans,
            )
            session.add(person_type)
            session.flush()
            ids[name] = person_type.id
    return ids


@pytest.fixture
def make_person(db, person_types) -> Callable[..., str]:
    """Factory creating a person, returns its id."""

    def _make(
        first_name: str = "Ana",
        last_name: str = "Lopez",
        person_type: str = "student",
        grade: Optional[str] = "5A",
        active: bool = True,
        has_penalty: bool = False,
    ) -> str:
        with db.get_session() as session:
            person = Person(
                first_name=first_name,
                last_name=last_name,
                grade=grade if person_type == "student" else None,
                person_type_id=person_types[person_type],
                active=active,
                has_penalty=has_penalty,
            )
            session.add(person)
            session.flush()
            return person.id

    return _make


@pytest.fixture
def make_resource(db) -> Callable[..., str]:
    """Factory creating a resource, returns its id."""

    def _make(title: str = "Test Book", author: str = "Test Author", availability: str = "available") -> str:
        with db.get_session() as session:
            resource = Resource(title=title, author=author, availability=availability)
            session.add(resource)
            session.flush()
            return resource.id

    return _make


@pytest.fixture
def make_loan(db) -> Callable[..., str]:
    """Factory inserting a loan record directly, returns its id.

    Open and lost loans also update the resource availability, as the
    state machine would have.
    """

    def _make(
        person_id: str,
        resource_id: str,
        loan_date: datetime,
        due_date: Optional[datetime] = None,
        status: str = "active",
        return_date: Optional[datetime] = None,
        observations: Optional[str] = None,
    ) -> str:
        due_date = due_date or loan_date + timedelta(days=15)
        if status == "returned" and return_date is None:
            return_date = loan_date + timedelta(days=5)

        with db.get_session() as session:
            loan = Loan(
                person_id=person_id,
                resource_id=resource_id,
                status=status,
                loan_date=to_iso(loan_date),
                due_date=to_iso(due_date),
                return_date=to_iso(return_date) if return_date else None,
                observations=observations,
            )
            session.add(loan)
            availability = {"active": "borrowed", "overdue": "borrowed", "lost": "lost"}
            if status in availability:
                session.execute(
                    update(Resource)
                    .where(Resource.id == resource_id)
                    .values(availability=availability[status])
                )
            session.flush()
            return loan.id

    return _make


@pytest.fixture
def student(make_person) -> str:
    """A student with no loans."""
    return make_person()


@pytest.fixture
def teacher(make_person) -> str:
    """A teacher with no loans."""
    return make_person(first_name="Carlos", last_name="Ruiz", person_type="teacher")


@pytest.fixture
def book(make_resource) -> str:
    """An available resource."""
    return make_resource(title="The Little Prince", author="Antoine de Saint-Exupery")


# ============================================================================
# CLI Testing Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner
    return CliRunner()


@pytest.fixture
def cli_app():
    """Get the CLI app for testing."""
    from lendingdesk.cli import app
    return app
