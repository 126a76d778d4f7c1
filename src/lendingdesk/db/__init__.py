"""Database module for local SQLite storage."""

from .models import Loan, LoanStatusDefinition, Person, PersonType, Resource
from .repositories import (
    LoanFilter,
    LoanRepository,
    PersonInfo,
    PersonProvider,
    ResourceInfo,
    ResourceProvider,
    SqlPersonProvider,
    SqlResourceProvider,
)
from .sqlite import Database, get_db

__all__ = [
    "Loan",
    "LoanStatusDefinition",
    "Person",
    "PersonType",
    "Resource",
    "LoanFilter",
    "LoanRepository",
    "PersonInfo",
    "PersonProvider",
    "ResourceInfo",
    "ResourceProvider",
    "SqlPersonProvider",
    "SqlResourceProvider",
    "Database",
    "get_db",
]
