"""
Aggregation Engine

DESIGN DECISION: Every function here is a pure function of its arguments.
No storage access, no clock reads when a reference date is passed, no
caching. Given the same transactions and reference date the results are
identical, whatever was computed before.

Amounts are already rounded to cents when they enter the system, so the
arithmetic here is plain float arithmetic with no further rounding.

Monthly policy shared by income and expense aggregation:
- monthly recurring items count in full
- yearly recurring items count as 1/12
- one-off items count only when dated inside the reference month
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from ledgersync.models.ledger import (
    BankAccount,
    Budget,
    BudgetPeriod,
    Expense,
    Frequency,
    Income,
)
from ledgersync.models.summary import BudgetStatus, FinancialSummary


DEFAULT_UPCOMING_BILLS_DAYS = 7

DateLike = Union[date, datetime]


def as_date(value: Optional[DateLike]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


def month_bounds(ref_date: Optional[DateLike] = None) -> tuple[date, date]:
    """First and last day of the month containing ref_date."""
    day = as_date(ref_date)
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


def _in_month(value: date, bounds: tuple[date, date]) -> bool:
    return bounds[0] <= value <= bounds[1]


def _expense_monthly_share(expense: Expense, bounds: tuple[date, date]) -> float:
    if expense.is_recurring:
        if expense.frequency == Frequency.MONTHLY:
            return expense.amount
        if expense.frequency == Frequency.YEARLY:
            return expense.amount / 12
        return 0.0
    if _in_month(expense.date, bounds):
        return expense.amount
    return 0.0


def monthly_income(
    incomes: Iterable[Income],
    ref_date: Optional[DateLike] = None,
) -> float:
    """Income attributable to ref_date's month."""
    bounds = month_bounds(ref_date)
    total = 0.0
    for income in incomes:
        if income.frequency == Frequency.MONTHLY:
            total += income.amount
        elif income.frequency == Frequency.YEARLY:
            total += income.amount / 12
        elif income.frequency == Frequency.ONE_TIME and _in_month(income.date, bounds):
            total += income.amount
    return total


def monthly_expenses(
    expenses: Iterable[Expense],
    ref_date: Optional[DateLike] = None,
) -> float:
    """
    Expenses attributable to ref_date's month.

    Every non-recurring expense dated inside the month counts, whatever its
    frequency label says.
    """
    bounds = month_bounds(ref_date)
    return sum((_expense_monthly_share(e, bounds) for e in expenses), 0.0)


def category_expenses(
    expenses: Iterable[Expense],
    category: str,
    ref_date: Optional[DateLike] = None,
) -> float:
    """monthly_expenses restricted to one category."""
    bounds = month_bounds(ref_date)
    return sum(
        (_expense_monthly_share(e, bounds) for e in expenses if e.category == category),
        0.0,
    )


def budget_progress(
    expenses: Iterable[Expense],
    budget: Budget,
    ref_date: Optional[DateLike] = None,
) -> float:
    """Percent of the budget consumed this month (0 for a zero budget)."""
    if budget.budget_amount <= 0:
        return 0.0
    spent = category_expenses(expenses, budget.category, ref_date)
    return spent * 100 / budget.budget_amount


def budget_status(progress: float, alert_threshold: float) -> BudgetStatus:
    """Classify budget progress against its alert threshold."""
    if progress >= 100:
        return BudgetStatus.OVER_BUDGET
    if progress >= alert_threshold:
        return BudgetStatus.ALMOST_THERE
    return BudgetStatus.ON_TRACK


def upcoming_bills(
    expenses: Iterable[Expense],
    horizon_days: int = DEFAULT_UPCOMING_BILLS_DAYS,
    today: Optional[DateLike] = None,
) -> list[Expense]:
    """Recurring expenses due within [today, today + horizon_days], soonest first."""
    start = as_date(today)
    end = start + timedelta(days=horizon_days)
    due = [
        e for e in expenses
        if e.is_recurring and e.next_due_date and start <= e.next_due_date <= end
    ]
    return sorted(due, key=lambda e: e.next_due_date)


def _summarize(
    total_income: float,
    expenses: list[Expense],
    budgets: Iterable[Budget],
    ref_date: Optional[DateLike],
    horizon_days: int,
) -> FinancialSummary:
    total_expenses = monthly_expenses(expenses, ref_date)
    savings = total_income - total_expenses
    savings_rate = savings * 100 / total_income if total_income > 0 else 0.0

    monthly_budget = sum(
        (b.budget_amount for b in budgets if b.period == BudgetPeriod.MONTHLY),
        0.0,
    )

    return FinancialSummary(
        total_income=total_income,
        total_expenses=total_expenses,
        savings=savings,
        savings_rate=savings_rate,
        monthly_budget=monthly_budget,
        monthly_budget_used=total_expenses,
        monthly_budget_remaining=monthly_budget - total_expenses,
        upcoming_bills=upcoming_bills(expenses, horizon_days, ref_date),
    )


def financial_summary(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    budgets: Iterable[Budget],
    selected_account: Optional[BankAccount],
    ref_date: Optional[DateLike] = None,
    horizon_days: int = DEFAULT_UPCOMING_BILLS_DAYS,
) -> FinancialSummary:
    """
    Summary for the selected account.

    Income is the account's lifetime total_income (which includes the
    starting balance); expenses are the month-windowed monthly_expenses.
    Use monthly_financial_summary when both should share the month window.
    """
    total_income = selected_account.total_income if selected_account else 0.0
    return _summarize(total_income, list(expenses), budgets, ref_date, horizon_days)


def monthly_financial_summary(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    budgets: Iterable[Budget],
    ref_date: Optional[DateLike] = None,
    horizon_days: int = DEFAULT_UPCOMING_BILLS_DAYS,
) -> FinancialSummary:
    """Summary with income and expenses both taken from ref_date's month."""
    total_income = monthly_income(incomes, ref_date)
    return _summarize(total_income, list(expenses), budgets, ref_date, horizon_days)


def format_currency(value: float, symbol: str = "Rs.") -> str:
    """Format an amount with thousands separators and two decimals."""
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol} {abs(value):,.2f}"
