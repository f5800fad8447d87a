"""Tests for per-account and calendar report views."""

import pytest
from datetime import date, datetime, timezone
from uuid import uuid4

from ledgersync.aggregation import (
    account_summary,
    category_breakdown,
    monthly_breakdown,
    recent_transactions,
)
from ledgersync.models import BankAccount, Expense, Income, TransactionType


REF = date(2024, 3, 15)


@pytest.fixture
def account():
    return BankAccount(
        owner_id="u",
        name="HDFC Savings",
        nickname="Daily",
        created_at=datetime(2024, 1, 10, tzinfo=timezone.utc),
        starting_balance=1000,
        total_income=1500,
        total_expense=300,
        current_balance=1200,
    )


@pytest.fixture
def transactions(account):
    incomes = [
        Income(owner_id="u", bank_account_id=account.id, amount=1000,
               date=date(2024, 1, 10), source="Initial Balance"),
        Income(owner_id="u", bank_account_id=account.id, amount=500,
               date=REF, source="Salary"),
    ]
    expenses = [
        Expense(owner_id="u", bank_account_id=account.id, amount=200,
                date=REF, category="food"),
        Expense(owner_id="u", bank_account_id=account.id, amount=100,
                date=date(2024, 2, 1), category="rent"),
        # Another account's expense must not leak in
        Expense(owner_id="u", bank_account_id=uuid4(), amount=999,
                date=REF, category="food"),
    ]
    return incomes, expenses


class TestCategoryBreakdown:
    def test_sorted_largest_first(self):
        account_id = uuid4()
        expenses = [
            Expense(owner_id="u", bank_account_id=account_id, amount=a,
                    date=REF, category=c)
            for a, c in [(10, "rent"), (50, "food"), (15, "rent"), (0, "misc"), (25, "bills")]
        ]
        breakdown = category_breakdown(expenses)
        assert list(breakdown) == ["food", "bills", "rent"]
        assert breakdown["rent"] == 25


class TestAccountSummary:
    """Per-account analysis."""

    def test_summary_figures(self, account, transactions):
        incomes, expenses = transactions
        summary = account_summary(account, incomes, expenses, REF)

        assert summary.display_name == "Daily"
        assert summary.initial_balance == 1000
        assert summary.current_balance == 1200
        assert summary.monthly_expenses == 200
        assert summary.savings == 1300
        assert summary.savings_rate == pytest.approx(86.6667, rel=1e-4)
        assert summary.transaction_count == 4
        assert summary.category_totals == {"food": 200, "rent": 100}

    def test_recent_transactions_newest_first(self, account, transactions):
        incomes, expenses = transactions
        summary = account_summary(account, incomes, expenses, REF)
        kinds = [(r.type, r.category) for r in summary.recent_transactions]
        assert kinds == [
            (TransactionType.INCOME, "Salary"),
            (TransactionType.EXPENSE, "food"),
            (TransactionType.EXPENSE, "rent"),
            (TransactionType.INCOME, "Initial Balance"),
        ]

    def test_recent_transactions_limit(self, transactions):
        incomes, expenses = transactions
        assert len(recent_transactions(incomes, expenses, limit=2)) == 2


class TestMonthlyBreakdown:
    """Calendar view for one year."""

    def test_year_rows(self, account, transactions):
        incomes, expenses = transactions
        rows = monthly_breakdown(incomes, expenses, account, 2024, today=REF)

        assert len(rows) == 12
        assert [r.month for r in rows[:3]] == ["Jan", "Feb", "Mar"]

        january, february, march = rows[0], rows[1], rows[2]
        assert january.income == 1000
        assert january.includes_initial_balance
        assert february.expenses == 100
        assert february.savings == -100
        assert not february.includes_initial_balance
        assert (march.income, march.expenses, march.savings) == (500, 200, 300)

    def test_future_months_are_zero(self, account, transactions):
        incomes, expenses = transactions
        rows = monthly_breakdown(incomes, expenses, account, 2024, today=date(2024, 1, 20))
        assert rows[0].income == 1000
        assert all(r.income == 0 and r.expenses == 0 for r in rows[1:])

    def test_no_account(self, transactions):
        incomes, expenses = transactions
        rows = monthly_breakdown(incomes, expenses, None, 2024, today=REF)
        assert all(r.income == 0 and r.expenses == 0 for r in rows)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
