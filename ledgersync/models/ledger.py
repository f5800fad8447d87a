"""
Core Data Models for Ledger Sync

These models define the strict schemas for every entity the ledger stores.
They are designed to:
1. Enforce type safety at runtime
2. Round money once, at the point of input
3. Serialize to the same camelCase document shape the remote store uses
4. Be safe to decode from loosely-typed remote snapshots

DESIGN DECISION: Amounts are plain floats holding values already rounded to
two decimals. Rounding goes through Decimal so that "250.555" becomes 250.56
the way a person reading the number would expect.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
)
from pydantic.alias_generators import to_camel


_CENTS = Decimal("0.01")


def utc_now() -> datetime:
    """Timezone-aware current time, used for creation timestamps."""
    return datetime.now(timezone.utc)


def round_to_two_decimals(value: Union[float, int, str, Decimal]) -> float:
    """
    Round a number to exactly 2 decimal places (half-up).

    Raises:
        InvalidOperation: If the value is not a finite number
    """
    return float(Decimal(str(value).strip()).quantize(_CENTS, rounding=ROUND_HALF_UP))


def validate_and_round_amount(raw: Any) -> Optional[float]:
    """
    Validate user input and round it to 2 decimal places.

    Returns the rounded amount, or None if the input is not a
    non-negative number.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        parsed = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite() or parsed < 0:
        return None
    try:
        return round_to_two_decimals(parsed)
    except InvalidOperation:
        # More digits than the decimal context holds at cent precision
        return None


def _coerce_amount(value: Any) -> float:
    amount = validate_and_round_amount(value)
    if amount is None:
        raise ValueError(f"Amount must be a non-negative number, got {value!r}")
    return amount


# Non-negative, rounded to cents on the way in
Amount = Annotated[float, BeforeValidator(_coerce_amount)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntityKind(str, Enum):
    """
    Collections held by the ledger store.

    Values double as collection names in the store's document paths.
    """
    BANK_ACCOUNTS = "bankAccounts"
    INCOMES = "incomes"
    EXPENSES = "expenses"
    BUDGETS = "budgets"
    SAVINGS_GOALS = "savingsGoals"
    BILL_REMINDERS = "billReminders"

    @property
    def is_account_scoped(self) -> bool:
        """Incomes and expenses live underneath their bank account."""
        return self in (EntityKind.INCOMES, EntityKind.EXPENSES)


class Frequency(str, Enum):
    """How often an income or expense repeats."""
    NONE = "none"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


class BudgetPeriod(str, Enum):
    """Window a budget amount applies to."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ReminderTime(str, Enum):
    """When a bill reminder becomes due, relative to the bill's due date."""
    SAME_DAY = "same-day"
    ONE_DAY_BEFORE = "1-day-before"
    THREE_DAYS_BEFORE = "3-days-before"


# =============================================================================
# BASE MODEL
# =============================================================================

class LedgerEntity(BaseModel):
    """
    Common shape of every stored entity.

    Attributes are snake_case in Python and camelCase in stored documents.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entity ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Authenticated principal that created the entity"
    )


# =============================================================================
# BANK ACCOUNTS AND TRANSACTIONS
# =============================================================================

class BankAccount(LedgerEntity):
    """
    A bank account with its running totals.

    total_income, total_expense and current_balance are derived from the
    account's transactions and rewritten on every recomputation.
    total_income includes starting_balance through the "Initial Balance"
    income seeded when the account is created.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    nickname: Optional[str] = Field(
        default=None,
        max_length=100
    )
    bank_name: Optional[str] = Field(
        default=None,
        max_length=100
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the account was created"
    )
    starting_balance: Amount = Field(
        default=0.0,
        description="Balance at creation time (never changes afterwards)"
    )

    # Derived
    total_income: float = 0.0
    total_expense: float = 0.0
    current_balance: float = 0.0

    @property
    def display_name(self) -> str:
        return self.nickname or self.name


class Income(LedgerEntity):
    """Money coming into a bank account."""

    bank_account_id: UUID = Field(
        ...,
        description="Owning bank account (never reassigned)"
    )
    amount: Amount
    date: date
    source: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Where the money came from (salary, Initial Balance, ...)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500
    )
    frequency: Frequency = Frequency.ONE_TIME


class Expense(LedgerEntity):
    """Money leaving a bank account."""

    bank_account_id: UUID = Field(
        ...,
        description="Owning bank account (never reassigned)"
    )
    amount: Amount
    date: date
    category: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500
    )
    frequency: Frequency = Frequency.ONE_TIME
    is_recurring: bool = False
    next_due_date: Optional[date] = Field(
        default=None,
        description="Next payment date of a recurring bill"
    )


# =============================================================================
# BUDGETS AND GOALS
# =============================================================================

class Budget(LedgerEntity):
    """
    Spending limit for one category.

    Progress is never stored; it is recomputed from expenses on demand.
    """

    category: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    budget_amount: Amount
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_threshold: float = Field(
        default=80,
        ge=0,
        le=100,
        description="Percent of the budget at which to warn"
    )
    bank_account_id: Optional[UUID] = None


class SavingsGoal(LedgerEntity):
    """
    A savings target.

    auto_tracked_amount is a cached projection of the scope's current
    savings, refreshed whenever the scope's totals change.
    """

    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique per owner, compared case-insensitively"
    )
    target_amount: Amount = 0.0
    current_amount: Amount = 0.0
    deadline: Optional[date] = None
    bank_account_id: Optional[UUID] = Field(
        default=None,
        description="Account the goal tracks; unset means any account"
    )
    auto_tracked_amount: float = Field(
        default=0.0,
        ge=0
    )
    created_at: datetime = Field(
        default_factory=utc_now
    )

    @property
    def title_key(self) -> str:
        return self.title.lower()

    def covers_account(self, account_id: UUID) -> bool:
        """Does this goal's scope include the given account?"""
        return self.bank_account_id is None or self.bank_account_id == account_id


class BillReminder(LedgerEntity):
    """A one-off reminder to pay a bill."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    amount: Amount
    due_date: date
    reminder_time: ReminderTime = ReminderTime.SAME_DAY
    is_paid: bool = False
    created_at: datetime = Field(
        default_factory=utc_now
    )


ENTITY_MODELS: dict[EntityKind, type[LedgerEntity]] = {
    EntityKind.BANK_ACCOUNTS: BankAccount,
    EntityKind.INCOMES: Income,
    EntityKind.EXPENSES: Expense,
    EntityKind.BUDGETS: Budget,
    EntityKind.SAVINGS_GOALS: SavingsGoal,
    EntityKind.BILL_REMINDERS: BillReminder,
}


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found in user input or a remote document."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_amount', 'duplicate')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
