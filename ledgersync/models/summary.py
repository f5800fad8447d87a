"""
Derived View Models

Everything in this module is computed from entities, never stored.
Views are rebuilt from scratch on every recomputation, so two views built
from the same inputs are always equal.
"""

from datetime import date
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ledgersync.models.ledger import (
    BankAccount,
    Budget,
    Expense,
    Frequency,
    Income,
    SavingsGoal,
)


class BudgetStatus(str, Enum):
    """How far a budget has been consumed, relative to its alert threshold."""
    ON_TRACK = "On Track"
    ALMOST_THERE = "Almost There"
    OVER_BUDGET = "Over Budget!"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class FinancialSummary(BaseModel):
    """Headline numbers for the selected account."""

    total_income: float
    total_expenses: float
    savings: float
    savings_rate: float = Field(
        ...,
        description="Savings as a percent of income (0 when there is no income)"
    )
    monthly_budget: float
    monthly_budget_used: float
    monthly_budget_remaining: float
    upcoming_bills: list[Expense] = Field(default_factory=list)


class TransactionRecord(BaseModel):
    """Income or expense flattened into one row for listings."""

    id: UUID
    type: TransactionType
    amount: float
    description: str
    category: str
    date: date
    frequency: Frequency
    is_recurring: bool = False


class AccountSummary(BaseModel):
    """Per-account analysis shown on the accounts and reports pages."""

    account_id: UUID
    display_name: str
    initial_balance: float
    total_income: float
    total_expense: float
    current_balance: float
    monthly_expenses: float
    savings: float
    savings_rate: float
    transaction_count: int
    category_totals: dict[str, float] = Field(default_factory=dict)
    recent_transactions: list[TransactionRecord] = Field(default_factory=list)


class MonthlyBreakdown(BaseModel):
    """Income, expenses and savings booked in one calendar month."""

    month: str = Field(
        ...,
        description="Short month label, e.g. 'Jan'"
    )
    month_start: date
    income: float
    expenses: float
    savings: float
    includes_initial_balance: bool = False


class LedgerState(BaseModel):
    """
    Read-only state published to the presentation layer.

    Built fresh after every recomputation from copies of the working set,
    so consumers can hold on to it without seeing later changes.
    """
    model_config = ConfigDict(frozen=True)

    bank_accounts: tuple[BankAccount, ...] = ()
    selected_bank_account: Optional[BankAccount] = None
    incomes: tuple[Income, ...] = ()
    expenses: tuple[Expense, ...] = ()
    budgets: tuple[Budget, ...] = ()
    savings_goals: tuple[SavingsGoal, ...] = ()
    budget_progress_by_budget_id: dict[UUID, float] = Field(default_factory=dict)

    # Remote channel health
    loading: bool = False
    error: Optional[str] = None
