"""Startup initialization: tables and the loan status vocabulary."""

import logging
from typing import Optional

from sqlalchemy import select

from .config import Config, get_config
from .db.models import LoanStatusDefinition, utc_timestamp
from .db.sqlite import Database, get_db
from .loans.schemas import STATUS_COLORS, LoanStatus

logger = logging.getLogger(__name__)


LOAN_STATUS_SEED = [
    {
        "name": LoanStatus.ACTIVE.value,
        "description": "Active loan - resource held by the borrower",
        "color": STATUS_COLORS[LoanStatus.ACTIVE],
    },
    {
        "name": LoanStatus.RETURNED.value,
        "description": "Returned loan - resource back at the desk",
        "color": STATUS_COLORS[LoanStatus.RETURNED],
    },
    {
        "name": LoanStatus.OVERDUE.value,
        "description": "Overdue loan - due date has passed",
        "color": STATUS_COLORS[LoanStatus.OVERDUE],
    },
    {
        "name": LoanStatus.LOST.value,
        "description": "Lost resource - not returned and declared lost",
        "color": STATUS_COLORS[LoanStatus.LOST],
    },
]


def list_loan_statuses(db: Optional[Database] = None) -> list[LoanStatusDefinition]:
    """Get all active loan status definitions, ordered by name."""
    db = db or get_db()
    with db.get_session() as session:
        stmt = (
            select(LoanStatusDefinition)
            .where(LoanStatusDefinition.active.is_(True))
            .order_by(LoanStatusDefinition.name)
        )
        return list(session.execute(stmt).scalars().all())


def verify_loan_statuses_exist(db: Optional[Database] = None) -> bool:
    """Check that every loan status is present and active."""
    names = {status.name for status in list_loan_statuses(db)}
    missing = [entry["name"] for entry in LOAN_STATUS_SEED if entry["name"] not in names]
    if missing:
        logger.debug("Missing loan statuses: %s", ", ".join(missing))
    return not missing


def seed_loan_statuses(db: Optional[Database] = None) -> int:
    """Create missing loan statuses and refresh drifted ones.

    Safe to run any number of times.

    Returns:
        Number of statuses created or updated
    """
    db = db or get_db()
    changed = 0

    with db.get_session() as session:
        for entry in LOAN_STATUS_SEED:
            existing = session.execute(
                select(LoanStatusDefinition).where(LoanStatusDefinition.name == entry["name"])
            ).scalar_one_or_none()

            if existing is None:
                session.add(LoanStatusDefinition(**entry, active=True))
                logger.info("Created loan status: %s", entry["name"])
                changed += 1
                continue

            if (
                existing.description != entry["description"]
                or existing.color != entry["color"]
                or not existing.active
            ):
                existing.description = entry["description"]
                existing.color = entry["color"]
                existing.active = True
                existing.updated_at = utc_timestamp()
                logger.info("Refreshed loan status: %s", entry["name"])
                changed += 1
            else:
                logger.debug("Loan status already exists: %s", entry["name"])

    return changed


def initialize(db: Optional[Database] = None, config: Optional[Config] = None) -> bool:
    """Prepare the database for use.

    Skipped in the test environment. Failures are logged and do not
    propagate, so a broken seed never blocks startup.

    Returns:
        True if initialization ran and succeeded
    """
    config = config or get_config()
    if config.is_test:
        logger.debug("Skipping initialization in test environment")
        return False

    try:
        db = db or get_db(str(config.db_path))
        db.create_tables()
        changed = seed_loan_statuses(db)
        if not verify_loan_statuses_exist(db):
            logger.error("Loan statuses incomplete after seeding")
            return False
        logger.info("Lending desk initialized (%d status change(s))", changed)
        return True
    except Exception:
        logger.exception("Initialization failed")
        return False
