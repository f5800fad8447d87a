"""
Report Views

Per-account analysis and calendar breakdowns built on top of the
aggregation engine. Like the engine, these are pure functions: callers pass
the transactions and the reference dates explicitly.
"""

import calendar
from datetime import date
from typing import Iterable, Optional

from ledgersync.aggregation.calculations import DateLike, as_date, monthly_expenses
from ledgersync.models.ledger import BankAccount, Expense, Income
from ledgersync.models.summary import (
    AccountSummary,
    MonthlyBreakdown,
    TransactionRecord,
    TransactionType,
)


def category_breakdown(expenses: Iterable[Expense]) -> dict[str, float]:
    """
    Lifetime spend per category, largest first.

    Categories with no spend are left out.
    """
    totals: dict[str, float] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, 0.0) + expense.amount
    return dict(
        sorted(
            ((k, v) for k, v in totals.items() if v > 0),
            key=lambda item: (-item[1], item[0]),
        )
    )


def transaction_records(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
) -> list[TransactionRecord]:
    """Incomes and expenses flattened into one list, newest first."""
    records = [
        TransactionRecord(
            id=income.id,
            type=TransactionType.INCOME,
            amount=income.amount,
            description=income.description or income.source,
            category=income.source,
            date=income.date,
            frequency=income.frequency,
        )
        for income in incomes
    ]
    records.extend(
        TransactionRecord(
            id=expense.id,
            type=TransactionType.EXPENSE,
            amount=expense.amount,
            description=expense.description or expense.category,
            category=expense.category,
            date=expense.date,
            frequency=expense.frequency,
            is_recurring=expense.is_recurring,
        )
        for expense in expenses
    )
    # Stable sort keeps incomes ahead of expenses on the same day
    records.sort(key=lambda r: r.date, reverse=True)
    return records


def recent_transactions(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    limit: int = 5,
) -> list[TransactionRecord]:
    return transaction_records(incomes, expenses)[:limit]


def account_summary(
    account: BankAccount,
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    ref_date: Optional[DateLike] = None,
) -> AccountSummary:
    """
    Analysis of one account.

    Only transactions belonging to the account are considered, so the full
    working set can be passed in. Income is the account's stored lifetime
    total, expenses for the savings figure are the month-windowed ones.
    """
    own_incomes = [i for i in incomes if i.bank_account_id == account.id]
    own_expenses = [e for e in expenses if e.bank_account_id == account.id]

    month_spend = monthly_expenses(own_expenses, ref_date)
    savings = account.total_income - month_spend
    savings_rate = (
        savings * 100 / account.total_income if account.total_income > 0 else 0.0
    )

    return AccountSummary(
        account_id=account.id,
        display_name=account.display_name,
        initial_balance=account.starting_balance,
        total_income=account.total_income,
        total_expense=account.total_expense,
        current_balance=account.total_income - account.total_expense,
        monthly_expenses=month_spend,
        savings=savings,
        savings_rate=savings_rate,
        transaction_count=len(own_incomes) + len(own_expenses),
        category_totals=category_breakdown(own_expenses),
        recent_transactions=recent_transactions(own_incomes, own_expenses),
    )


def monthly_breakdown(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    account: Optional[BankAccount],
    year: int,
    today: Optional[DateLike] = None,
) -> list[MonthlyBreakdown]:
    """
    Booked income and expenses for every month of a year.

    Months after the current one are reported as zero. The month the account
    was created in is flagged, since its income includes the seeded initial
    balance. Without an account every month is zero.
    """
    current = as_date(today)
    current_month = date(current.year, current.month, 1)
    own_incomes = (
        [i for i in incomes if i.bank_account_id == account.id] if account else []
    )
    own_expenses = (
        [e for e in expenses if e.bank_account_id == account.id] if account else []
    )
    created = account.created_at.date() if account else None

    rows = []
    for month in range(1, 13):
        month_start = date(year, month, 1)
        label = calendar.month_abbr[month]
        if month_start > current_month:
            rows.append(
                MonthlyBreakdown(
                    month=label,
                    month_start=month_start,
                    income=0.0,
                    expenses=0.0,
                    savings=0.0,
                )
            )
            continue

        income = sum(
            (i.amount for i in own_incomes
             if (i.date.year, i.date.month) == (year, month)),
            0.0,
        )
        spent = sum(
            (e.amount for e in own_expenses
             if (e.date.year, e.date.month) == (year, month)),
            0.0,
        )
        rows.append(
            MonthlyBreakdown(
                month=label,
                month_start=month_start,
                income=income,
                expenses=spent,
                savings=income - spent,
                includes_initial_balance=(
                    created is not None
                    and (created.year, created.month) == (year, month)
                ),
            )
        )
    return rows
