"""Command-line interface for lendingdesk.

Built with Typer for commands and Rich for output.
"""

from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db import get_db
from .errors import LendingError
from .logging_setup import configure_logging

# Create the main app
app = typer.Typer(
    name="lendingdesk",
    help="Lend resources, track overdue loans and report lending statistics.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()

SEVERITY_STYLES = {
    "low": "yellow",
    "medium": "dark_orange",
    "high": "red",
    "critical": "bold red",
}


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def get_manager():
    """Build a lending manager on the configured database."""
    from .loans import LendingManager

    config = get_config()
    return LendingManager(get_db(str(config.db_path)), config=config)


def fail(error: LendingError) -> None:
    """Report a domain error and exit with status 1."""
    print_error(error.message)
    raise typer.Exit(1)


def format_severity(severity: Optional[str]) -> str:
    if not severity:
        return "-"
    style = SEVERITY_STYLES.get(severity, "white")
    return f"[{style}]{severity}[/{style}]"


@app.callback()
def main_callback() -> None:
    """Configure logging and prepare the database before any command runs."""
    from .bootstrap import initialize

    config = get_config()
    configure_logging(config.log_level)
    initialize(config=config)


# ============================================================================
# Setup
# ============================================================================


@app.command()
def init() -> None:
    """Create tables and seed the loan status vocabulary."""
    from .bootstrap import initialize, list_loan_statuses

    config = get_config()
    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(1)

    if config.is_test:
        print_warning("Test environment: initialization skipped")
        return

    db = get_db(str(config.db_path))
    if not initialize(db, config):
        print_error("Initialization failed, see log output")
        raise typer.Exit(1)

    table = Table(title="Loan Statuses", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Color")
    for status in list_loan_statuses(db):
        table.add_row(status.name, status.description, f"[{status.color}]{status.color}[/]")

    console.print(table)
    print_success(f"Database ready at {config.db_path}")


# ============================================================================
# Loan Commands
# ============================================================================


@app.command("can-borrow")
def can_borrow(
    person_id: str = typer.Argument(..., help="Person ID"),
    resource_id: Optional[str] = typer.Option(None, "--resource", "-r", help="Resource ID"),
) -> None:
    """Check whether a person may borrow."""
    manager = get_manager()

    try:
        result = manager.can_borrow(person_id, resource_id)
    except LendingError as e:
        fail(e)

    details = result.details
    counts = (
        f"Open loans: {details.active_count + details.overdue_count}"
        f"/{details.max_loans_allowed} (overdue: {details.overdue_count})"
    )
    if result.allowed:
        console.print(Panel(f"[bold green]Allowed[/bold green]\n{counts}", style="green"))
        return

    console.print(Panel(
        f"[bold red]Denied: {result.reason.value}[/bold red]\n{counts}",
        style="red",
    ))
    for loan in details.current_loans:
        console.print(
            f"  [dim]{loan.id[:8]}[/dim] {loan.resource_title or loan.resource_id} "
            f"due {loan.due_date.date().isoformat()} ({loan.status.value})"
        )


@app.command()
def borrow(
    person_id: str = typer.Argument(..., help="Person ID"),
    resource_id: str = typer.Argument(..., help="Resource ID"),
) -> None:
    """Lend a resource to a person."""
    manager = get_manager()

    try:
        loan = manager.borrow(person_id, resource_id)
    except LendingError as e:
        fail(e)

    print_success(f"Loan {loan.id} created")
    console.print(f"[dim]Due: {loan.due_date.date().isoformat()}[/dim]")


@app.command("return")
def return_(
    loan_ids: list[str] = typer.Argument(..., help="Loan ID(s) to return"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Return observations"),
) -> None:
    """Mark one or more loans as returned."""
    manager = get_manager()

    if len(loan_ids) == 1:
        try:
            result = manager.return_loan(loan_ids[0], observations=notes)
        except LendingError as e:
            fail(e)
        if result.was_overdue:
            print_warning(result.message)
        else:
            print_success(result.message)
        return

    results = manager.return_batch(loan_ids)
    failed = 0
    for item in results:
        if item.success:
            console.print(f"[green]✓[/green] {item.loan_id}: {item.message}")
        else:
            failed += 1
            console.print(f"[red]✗[/red] {item.loan_id}: {item.error}")

    console.print(f"\n[bold]{len(results) - failed}/{len(results)} returned[/bold]")
    if failed:
        raise typer.Exit(1)


@app.command()
def lost(
    loan_id: str = typer.Argument(..., help="Loan ID"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Observations"),
) -> None:
    """Declare the resource of a loan lost."""
    manager = get_manager()

    try:
        loan = manager.mark_lost(loan_id, observations=notes)
    except LendingError as e:
        fail(e)

    print_warning(f"Loan {loan.id} marked lost")


@app.command()
def renew(
    loan_id: str = typer.Argument(..., help="Loan ID"),
    days: int = typer.Option(7, "--days", "-d", help="Days to add to the due date"),
) -> None:
    """Extend the due date of an active loan."""
    manager = get_manager()

    try:
        loan = manager.renew(loan_id, days)
    except LendingError as e:
        fail(e)

    print_success(f"Loan renewed, now due {loan.due_date.date().isoformat()}")


@app.command("due-soon")
def due_soon(
    days: int = typer.Option(3, "--days", "-d", help="Days to look ahead"),
) -> None:
    """Show open loans due in the next few days."""
    manager = get_manager()
    loans = manager.get_loans_due_soon(days=days)

    if not loans:
        console.print(f"[dim]No loans due in the next {days} days[/dim]")
        return

    table = Table(title=f"Due in {days} days", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Resource", style="cyan", max_width=30)
    table.add_column("Person")
    table.add_column("Due")
    for loan in loans:
        table.add_row(
            loan.id[:8],
            loan.resource_title or loan.resource_id,
            loan.person_name or loan.person_id,
            loan.due_date.date().isoformat(),
        )
    console.print(table)


# ============================================================================
# Overdue Commands
# ============================================================================


@app.command()
def overdue(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Person or title text"),
    person_type: Optional[str] = typer.Option(None, "--type", "-t", help="student or teacher"),
    min_days: Optional[int] = typer.Option(None, "--min-days", help="Minimum days overdue"),
    grade: Optional[str] = typer.Option(None, "--grade", "-g", help="Student grade"),
    person_id: Optional[str] = typer.Option(None, "--person", help="Borrower ID"),
    resource_id: Optional[str] = typer.Option(None, "--resource", "-r", help="Resource ID"),
    due_from: Optional[datetime] = typer.Option(
        None, "--due-from", help="Earliest due date (YYYY-MM-DD)", formats=["%Y-%m-%d"]
    ),
    due_to: Optional[datetime] = typer.Option(
        None, "--due-to", help="Latest due date (YYYY-MM-DD)", formats=["%Y-%m-%d"]
    ),
    sort_by: Optional[str] = typer.Option(
        None, "--sort", help="days_overdue, due_date, loan_date, person_name or resource_title"
    ),
    sort_order: Optional[str] = typer.Option(None, "--order", help="asc or desc"),
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    page_size: int = typer.Option(10, "--page-size", help="Rows per page"),
) -> None:
    """List overdue loans, most overdue first unless sorted otherwise."""
    from pydantic import ValidationError as SchemaError

    from .loans import OverdueFilter

    manager = get_manager()

    try:
        filters = OverdueFilter(
            search=search,
            person_type=person_type,
            min_days_overdue=min_days,
            grade=grade,
            person_id=person_id,
            resource_id=resource_id,
            due_date_from=due_from,
            due_date_to=due_to,
        )
    except SchemaError as e:
        print_error(f"Invalid filter: {e.errors()[0]['msg']}")
        raise typer.Exit(1)

    try:
        result = manager.overdue.list_overdue(
            filters,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except LendingError as e:
        fail(e)

    if not result.items:
        print_success("No overdue loans!")
        return

    table = Table(
        title=f"Overdue Loans ({result.total}), page {result.page}/{result.total_pages}",
        show_header=True,
        header_style="bold red",
    )
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Person")
    table.add_column("Type")
    table.add_column("Resource", style="cyan", max_width=30)
    table.add_column("Due")
    table.add_column("Days", justify="right")
    table.add_column("Severity")

    for record in result.items:
        table.add_row(
            record.id[:8],
            record.person_name,
            record.person_type or "-",
            record.resource_title,
            record.due_date.date().isoformat(),
            str(record.days_overdue),
            format_severity(record.severity.value),
        )

    console.print(table)


@app.command("overdue-stats")
def overdue_stats() -> None:
    """Summarize all currently overdue loans."""
    manager = get_manager()
    stats = manager.overdue.overdue_stats()

    if not stats.total_overdue:
        print_success("No overdue loans!")
        return

    lines = [
        f"[bold red]Overdue loans: {stats.total_overdue}[/bold red]",
        f"Average days overdue: {stats.average_days_overdue}",
    ]
    if stats.oldest_overdue:
        oldest = stats.oldest_overdue
        lines.append(
            f"Oldest: {oldest.resource_title} ({oldest.person_name}), "
            f"{oldest.days_overdue} days"
        )
    console.print(Panel("\n".join(lines), style="red"))

    table = Table(title="By Severity", show_header=True, header_style="bold magenta")
    table.add_column("Severity")
    table.add_column("Loans", justify="right")
    for severity, count in stats.by_severity.items():
        table.add_row(format_severity(severity), str(count))
    console.print(table)

    console.print("\n[bold]By person type:[/bold]")
    for person_type, count in stats.by_person_type.items():
        console.print(f"  {person_type}: {count}")

    if stats.by_grade:
        console.print("\n[bold]By grade:[/bold]")
        for entry in stats.by_grade:
            console.print(f"  {entry.grade}: {entry.count}")


# ============================================================================
# Statistics
# ============================================================================


@app.command()
def stats(
    period: Optional[str] = typer.Option(
        None, "--period", "-p", help="today, week, month, quarter or year"
    ),
    start: Optional[datetime] = typer.Option(
        None, "--start", help="Range start (YYYY-MM-DD)", formats=["%Y-%m-%d"]
    ),
    end: Optional[datetime] = typer.Option(
        None, "--end", help="Range end, exclusive (YYYY-MM-DD)", formats=["%Y-%m-%d"]
    ),
    trends: bool = typer.Option(False, "--trends", help="Include monthly trends"),
    details: bool = typer.Option(False, "--details", help="Include names and titles"),
) -> None:
    """Show lending statistics for a period."""
    from .stats import LoanStatistics

    config = get_config()
    statistics = LoanStatistics(get_db(str(config.db_path)), config=config)

    try:
        snapshot = statistics.compute_stats(
            period=period,
            start_date=start,
            end_date=end,
            include_trends=trends,
            include_details=details,
        )
    except LendingError as e:
        fail(e)

    period_stats = snapshot.period_stats
    date_range = period_stats.date_range
    comparison = snapshot.comparison
    change = (
        f"{comparison.change_percentage:+.1f}%"
        if comparison.change_percentage is not None
        else "n/a"
    )

    console.print(Panel(
        f"[bold]Period:[/bold] {period_stats.period} "
        f"({date_range.start.date().isoformat()} to {date_range.end.date().isoformat()})\n"
        f"New loans: {snapshot.total_loans} (vs {comparison.new_loans}, {change})\n"
        f"Returned: {snapshot.returned_loans}   Lost: {snapshot.lost_resources}\n"
        f"Open now: {snapshot.active_loans} active, {snapshot.overdue_loans} overdue\n"
        f"On-time return rate: {snapshot.on_time_return_rate:.0%}   "
        f"Overdue rate: {snapshot.overdue_rate:.0%}\n"
        f"Average loan duration: {snapshot.average_loan_duration} days",
        title="Lending Statistics",
    ))

    table = Table(title="Status Distribution", show_header=True, header_style="bold magenta")
    table.add_column("Status")
    table.add_column("Loans", justify="right")
    table.add_column("%", justify="right")
    for share in snapshot.status_distribution:
        table.add_row(f"[{share.color}]{share.status}[/]", str(share.count), f"{share.percentage}")
    console.print(table)

    if snapshot.top_resources:
        console.print("\n[bold]Top resources:[/bold]")
        for entry in snapshot.top_resources:
            console.print(f"  {entry.title or entry.resource_id}: {entry.borrow_count}")

    if snapshot.top_borrowers:
        console.print("\n[bold]Top borrowers:[/bold]")
        for entry in snapshot.top_borrowers:
            extra = (
                f" ({entry.active_loans} active, {entry.overdue_loans} overdue)"
                if details else ""
            )
            console.print(f"  {entry.full_name or entry.person_id}: {entry.borrow_count}{extra}")

    if snapshot.monthly_trends:
        console.print("\n[bold]Monthly trends:[/bold]")
        for trend in snapshot.monthly_trends:
            bar = "█" * trend.new_loans
            console.print(
                f"  {trend.month_name[:3]} {trend.year}: {bar} {trend.new_loans} new, "
                f"{trend.returned_loans} returned, {trend.overdue_loans} overdue"
            )


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"lendingdesk version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
