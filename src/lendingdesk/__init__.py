"""Loan lifecycle and eligibility engine for a school lending desk."""

__version__ = "0.1.0"
