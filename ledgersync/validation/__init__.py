"""Validation package."""

from ledgersync.validation.validator import (
    DuplicateGoalError,
    LedgerValidator,
    ValidationError,
    issues_from_pydantic,
)

__all__ = [
    "DuplicateGoalError",
    "LedgerValidator",
    "ValidationError",
    "issues_from_pydantic",
]
