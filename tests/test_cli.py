"""Tests for the CLI interface."""

from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

from lendingdesk.cli import app
from lendingdesk.clock import to_iso
from lendingdesk.db.models import Loan, LoanStatusDefinition, Person, PersonType, Resource
from lendingdesk.db.sqlite import Database

MISSING_ID = "00000000-0000-4000-8000-000000000000"


@pytest.fixture(autouse=True)
def setup_test_db(tmp_path, monkeypatch):
    """Point the CLI at a temporary database."""
    db_path = tmp_path / "lending.db"
    monkeypatch.setenv("LENDINGDESK_DB_PATH", str(db_path))
    monkeypatch.setenv("LENDINGDESK_ENV", "development")
    monkeypatch.setenv("LENDINGDESK_LOG_LEVEL", "WARNING")
    return db_path


@pytest.fixture
def desk(setup_test_db):
    """A database holding one student and two books."""
    db = Database(str(setup_test_db))
    db.create_tables()
    with db.get_session() as session:
        student_type = PersonType(name="student", max_loans=3)
        session.add(student_type)
        session.flush()
        person = Person(first_name="Ana", last_name="Lopez", grade="5A", person_type_id=student_type.id)
        first = Resource(title="The Little Prince")
        second = Resource(title="Atlas of the World")
        session.add_all([person, first, second])
        session.flush()
        return {"db": db, "person": person.id, "book": first.id, "atlas": second.id}


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


class TestCLIBasics:
    """Tests for basic CLI functionality."""

    def test_help(self, runner: CliRunner):
        """Test that help command works."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "overdue" in result.stdout

    def test_version(self, runner: CliRunner):
        """Test version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.stdout

    def test_init(self, runner: CliRunner, setup_test_db):
        """Test init seeds the loan statuses."""
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert "overdue" in result.stdout
        assert setup_test_db.exists()

    def test_init_test_env(self, runner: CliRunner, monkeypatch):
        """Test init is skipped in the test environment."""
        monkeypatch.setenv("LENDINGDESK_ENV", "test")

        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert "skipped" in result.stdout


class TestStartup:
    """Tests for initialization on every invocation."""

    def test_any_command_seeds_statuses(self, runner: CliRunner, setup_test_db):
        """Test a command other than init prepares a fresh database."""
        result = runner.invoke(app, ["overdue"])
        assert result.exit_code == 0

        db = Database(str(setup_test_db))
        with db.get_session() as session:
            names = {status.name for status in session.query(LoanStatusDefinition)}
        assert names == {"active", "returned", "overdue", "lost"}

    def test_test_env_skips_seed(self, runner: CliRunner, setup_test_db, monkeypatch):
        """Test startup leaves the statuses alone in the test environment."""
        monkeypatch.setenv("LENDINGDESK_ENV", "test")

        result = runner.invoke(app, ["overdue"])
        assert result.exit_code == 0

        db = Database(str(setup_test_db))
        with db.get_session() as session:
            assert session.query(LoanStatusDefinition).count() == 0


class TestLoanCommands:
    """Tests for loan commands."""

    def test_can_borrow(self, runner: CliRunner, desk):
        """Test an eligibility check."""
        result = runner.invoke(app, ["can-borrow", desk["person"], "--resource", desk["book"]])

        assert result.exit_code == 0
        assert "Allowed" in result.stdout

    def test_borrow_and_return(self, runner: CliRunner, desk):
        """Test lending and returning through the CLI."""
        result = runner.invoke(app, ["borrow", desk["person"], desk["book"]])
        assert result.exit_code == 0
        assert "created" in result.stdout

        with desk["db"].get_session() as session:
            loan_id = session.query(Loan).one().id

        result = runner.invoke(app, ["return", loan_id, "--notes", "Fine"])
        assert result.exit_code == 0
        assert "Return recorded" in result.stdout

    def test_borrow_taken_resource(self, runner: CliRunner, desk):
        """Test a denied borrow exits with an error."""
        runner.invoke(app, ["borrow", desk["person"], desk["book"]])

        result = runner.invoke(app, ["borrow", desk["person"], desk["book"]])
        assert result.exit_code == 1
        assert "resource unavailable" in result.stdout

    def test_return_unknown(self, runner: CliRunner, desk):
        """Test returning an unknown loan exits with an error."""
        result = runner.invoke(app, ["return", MISSING_ID])

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_batch_return(self, runner: CliRunner, desk):
        """Test returning several loans reports each one."""
        runner.invoke(app, ["borrow", desk["person"], desk["book"]])
        with desk["db"].get_session() as session:
            loan_id = session.query(Loan).one().id

        result = runner.invoke(app, ["return", loan_id, MISSING_ID])
        assert result.exit_code == 1
        assert "1/2 returned" in result.stdout

    def test_renew_out_of_bounds(self, runner: CliRunner, desk):
        """Test renewal bounds are enforced."""
        runner.invoke(app, ["borrow", desk["person"], desk["book"]])
        with desk["db"].get_session() as session:
            loan_id = session.query(Loan).one().id

        result = runner.invoke(app, ["renew", loan_id, "--days", "45"])
        assert result.exit_code == 1

    def test_lost(self, runner: CliRunner, desk):
        """Test declaring a resource lost."""
        runner.invoke(app, ["borrow", desk["person"], desk["book"]])
        with desk["db"].get_session() as session:
            loan_id = session.query(Loan).one().id

        result = runner.invoke(app, ["lost", loan_id])
        assert result.exit_code == 0
        assert "lost" in result.stdout


class TestReportCommands:
    """Tests for overdue and statistics commands."""

    def test_overdue_empty(self, runner: CliRunner, desk):
        """Test the overdue listing with nothing overdue."""
        result = runner.invoke(app, ["overdue"])

        assert result.exit_code == 0
        assert "No overdue loans" in result.stdout

    def test_overdue_listing(self, runner: CliRunner, desk):
        """Test an overdue loan shows with its severity."""
        now = datetime.now(timezone.utc)
        with desk["db"].get_session() as session:
            session.add(Loan(
                person_id=desk["person"],
                resource_id=desk["atlas"],
                status="active",
                loan_date=to_iso(now - timedelta(days=30)),
                due_date=to_iso(now - timedelta(days=15, hours=1)),
            ))

        result = runner.invoke(app, ["overdue"])
        assert result.exit_code == 0
        assert "Overdue Loans (1)" in result.stdout

        result = runner.invoke(app, ["overdue-stats"])
        assert result.exit_code == 0
        assert "Overdue loans: 1" in result.stdout
        assert "high" in result.stdout

    def test_stats(self, runner: CliRunner, desk):
        """Test the statistics command."""
        runner.invoke(app, ["borrow", desk["person"], desk["book"]])

        result = runner.invoke(app, ["stats", "--period", "month", "--trends", "--details"])
        assert result.exit_code == 0
        assert "Lending Statistics" in result.stdout

    def test_stats_lone_start(self, runner: CliRunner, desk):
        """Test a lone range bound is rejected."""
        result = runner.invoke(app, ["stats", "--start", "2026-03-01"])

        assert result.exit_code == 1
        assert "together" in result.stdout

    def test_stats_bad_period(self, runner: CliRunner, desk):
        """Test an unknown period is rejected."""
        result = runner.invoke(app, ["stats", "--period", "decade"])
        assert result.exit_code == 1


class TestOverdueFilters:
    """Tests for the overdue listing options."""

    @pytest.fixture
    def late(self, desk):
        """One loan on the atlas, twenty days overdue."""
        now = datetime.now(timezone.utc)
        with desk["db"].get_session() as session:
            session.add(Loan(
                person_id=desk["person"],
                resource_id=desk["atlas"],
                status="active",
                loan_date=to_iso(now - timedelta(days=35)),
                due_date=to_iso(now - timedelta(days=20)),
            ))
        return desk

    def test_filter_by_resource(self, runner: CliRunner, late):
        """Test the resource option narrows the listing."""
        result = runner.invoke(app, ["overdue", "--resource", late["atlas"]])
        assert "Overdue Loans (1)" in result.stdout

        result = runner.invoke(app, ["overdue", "--resource", late["book"]])
        assert result.exit_code == 0
        assert "No overdue loans" in result.stdout

    def test_filter_by_person(self, runner: CliRunner, late):
        """Test the person option narrows the listing."""
        result = runner.invoke(app, ["overdue", "--person", late["person"]])
        assert "Overdue Loans (1)" in result.stdout

    def test_due_date_range(self, runner: CliRunner, late):
        """Test due dates after the range end are excluded."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=25)).strftime("%Y-%m-%d")

        result = runner.invoke(app, ["overdue", "--due-to", cutoff])
        assert result.exit_code == 0
        assert "No overdue loans" in result.stdout

    def test_sort_options(self, runner: CliRunner, late):
        """Test explicit sort field and order are accepted."""
        result = runner.invoke(app, ["overdue", "--sort", "due_date", "--order", "asc"])

        assert result.exit_code == 0
        assert "Overdue Loans (1)" in result.stdout

    def test_unknown_sort_field(self, runner: CliRunner, late):
        """Test an unknown sort field exits with an error."""
        result = runner.invoke(app, ["overdue", "--sort", "shelf"])

        assert result.exit_code == 1
        assert "sort_by must be one of" in result.stdout
