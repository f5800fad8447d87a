"""
Data Models Package

This package contains all Pydantic models used in Ledger Sync.
All data flowing through the system must conform to these schemas.
"""

from ledgersync.models.ledger import (
    Amount,
    BankAccount,
    BillReminder,
    Budget,
    BudgetPeriod,
    ENTITY_MODELS,
    EntityKind,
    Expense,
    Frequency,
    Income,
    LedgerEntity,
    ReminderTime,
    SavingsGoal,
    ValidationIssue,
    round_to_two_decimals,
    utc_now,
    validate_and_round_amount,
)
from ledgersync.models.summary import (
    AccountSummary,
    BudgetStatus,
    FinancialSummary,
    LedgerState,
    MonthlyBreakdown,
    TransactionRecord,
    TransactionType,
)
from ledgersync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger entities
    "Amount",
    "BankAccount",
    "BillReminder",
    "Budget",
    "BudgetPeriod",
    "ENTITY_MODELS",
    "EntityKind",
    "Expense",
    "Frequency",
    "Income",
    "LedgerEntity",
    "ReminderTime",
    "SavingsGoal",
    "ValidationIssue",
    "round_to_two_decimals",
    "utc_now",
    "validate_and_round_amount",
    # Derived views
    "AccountSummary",
    "BudgetStatus",
    "FinancialSummary",
    "LedgerState",
    "MonthlyBreakdown",
    "TransactionRecord",
    "TransactionType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
