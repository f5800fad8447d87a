"""Aggregation package: pure calculations over transaction sets."""

from ledgersync.aggregation.calculations import (
    DEFAULT_UPCOMING_BILLS_DAYS,
    budget_progress,
    budget_status,
    category_expenses,
    financial_summary,
    format_currency,
    month_bounds,
    monthly_expenses,
    monthly_financial_summary,
    monthly_income,
    upcoming_bills,
)
from ledgersync.aggregation.reports import (
    account_summary,
    category_breakdown,
    monthly_breakdown,
    recent_transactions,
    transaction_records,
)

__all__ = [
    "DEFAULT_UPCOMING_BILLS_DAYS",
    "budget_progress",
    "budget_status",
    "category_expenses",
    "financial_summary",
    "format_currency",
    "month_bounds",
    "monthly_expenses",
    "monthly_financial_summary",
    "monthly_income",
    "upcoming_bills",
    "account_summary",
    "category_breakdown",
    "monthly_breakdown",
    "recent_transactions",
    "transaction_records",
]
