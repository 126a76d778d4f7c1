"""Configuration management for lendingdesk.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from .loans.schemas import SeverityThresholds

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Runtime
    env: str  # development / production / test
    log_level: str

    # Lending policy
    loan_days: int
    default_max_loans: int
    max_renew_days: int

    # Overdue severity thresholds (days overdue, inclusive lower bounds)
    severity_medium: int
    severity_high: int
    severity_critical: int

    # Statistics
    top_n: int

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "LENDINGDESK_DB_PATH",
            str(Path.home() / ".lendingdesk" / "lending.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            env=os.environ.get("LENDINGDESK_ENV", "development").lower(),
            log_level=os.environ.get("LENDINGDESK_LOG_LEVEL", "INFO").upper(),
            loan_days=int(os.environ.get("LENDINGDESK_LOAN_DAYS", "15")),
            default_max_loans=int(os.environ.get("LENDINGDESK_DEFAULT_MAX_LOANS", "3")),
            max_renew_days=int(os.environ.get("LENDINGDESK_MAX_RENEW_DAYS", "30")),
            severity_medium=int(os.environ.get("LENDINGDESK_SEVERITY_MEDIUM", "7")),
            severity_high=int(os.environ.get("LENDINGDESK_SEVERITY_HIGH", "15")),
            severity_critical=int(os.environ.get("LENDINGDESK_SEVERITY_CRITICAL", "30")),
            top_n=int(os.environ.get("LENDINGDESK_TOP_N", "5")),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_days < 1:
            errors.append(f"Loan period must be at least 1 day, got {self.loan_days}")

        if self.default_max_loans < 1:
            errors.append(f"Default max loans must be positive, got {self.default_max_loans}")

        if self.max_renew_days < 1:
            errors.append(f"Max renewal days must be positive, got {self.max_renew_days}")

        if not 1 < self.severity_medium < self.severity_high < self.severity_critical:
            errors.append(
                "Severity thresholds must be strictly ascending and above 1: "
                f"{self.severity_medium}, {self.severity_high}, {self.severity_critical}"
            )

        if self.top_n < 1:
            errors.append(f"Top-N must be positive, got {self.top_n}")

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors

    @property
    def is_test(self) -> bool:
        """Whether running under the test environment."""
        return self.env == "test"

    @property
    def severity_thresholds(self) -> "SeverityThresholds":
        """Severity tier thresholds as a schema object."""
        from .loans.schemas import SeverityThresholds

        return SeverityThresholds(
            medium=self.severity_medium,
            high=self.severity_high,
            critical=self.severity_critical,
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
