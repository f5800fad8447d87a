"""Tests for input validation."""

import pytest
from datetime import date
from uuid import uuid4

from ledgersync.config import LedgerSettings
from ledgersync.models import BankAccount, Income, SavingsGoal
from ledgersync.validation import DuplicateGoalError, LedgerValidator, ValidationError


@pytest.fixture
def validator():
    return LedgerValidator(LedgerSettings(max_amount=1_000_000, default_alert_threshold=70))


class TestAmountChecks:
    """Amount checks run before schema checks."""

    def test_rounds_amount(self, validator):
        income = validator.build_income(
            {"bank_account_id": uuid4(), "amount": "250.555",
             "date": date(2024, 3, 1), "source": "Salary"},
            "user-1",
        )
        assert isinstance(income, Income)
        assert income.amount == 250.56

    @pytest.mark.parametrize("amount", ["abc", "-1", None, 1e30, "1e400", 10**40])
    def test_rejects_bad_amount(self, validator, amount):
        with pytest.raises(ValidationError) as exc_info:
            validator.build_expense(
                {"bankAccountId": str(uuid4()), "amount": amount,
                 "date": "2024-03-01", "category": "food"},
                "user-1",
            )
        issue = exc_info.value.issues[0]
        assert issue.field == "amount"
        assert issue.issue_type == "invalid_amount"

    def test_rejects_suspicious_amount(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.build_income(
                {"bank_account_id": uuid4(), "amount": 5_000_000,
                 "date": date(2024, 3, 1), "source": "Lottery"},
                "user-1",
            )
        assert exc_info.value.issues[0].issue_type == "suspicious_value"


class TestSchemaChecks:
    def test_missing_field_reported(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.build_income(
                {"bank_account_id": uuid4(), "amount": 10, "date": date(2024, 3, 1)},
                "user-1",
            )
        fields = [i.field for i in exc_info.value.issues]
        assert "source" in fields
        assert exc_info.value.entity_type == "income"

    def test_bad_enum_reported(self, validator):
        with pytest.raises(ValidationError):
            validator.build_income(
                {"bank_account_id": uuid4(), "amount": 10, "date": date(2024, 3, 1),
                 "source": "Salary", "frequency": "weekly"},
                "user-1",
            )

    def test_issues_as_dicts(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.build_budget({"category": "food", "budget_amount": "x"}, "user-1")
        assert exc_info.value.issues_as_dicts()[0]["field"] == "budget_amount"


class TestEntityBuilders:
    def test_owner_comes_from_caller(self, validator):
        budget = validator.build_budget(
            {"category": "food", "budgetAmount": 500, "ownerId": "someone-else"},
            "user-1",
        )
        assert budget.owner_id == "user-1"

    def test_budget_default_threshold_from_settings(self, validator):
        budget = validator.build_budget({"category": "food", "budget_amount": 500}, "user-1")
        assert budget.alert_threshold == 70

    def test_bank_account_totals_are_discarded(self, validator):
        account = validator.build_bank_account(
            {"name": "Main", "startingBalance": "1000.005",
             "totalIncome": 99, "current_balance": 42},
            "user-1",
        )
        assert isinstance(account, BankAccount)
        assert account.starting_balance == 1000.01
        assert account.total_income == 0
        assert account.current_balance == 0

    def test_revalidate_catches_in_place_edits(self, validator):
        account = validator.build_bank_account({"name": "Main"}, "user-1")
        account.name = ""
        with pytest.raises(ValidationError):
            validator.revalidate(account, "user-1")

    def test_bill_reminder(self, validator):
        reminder = validator.build_bill_reminder(
            {"title": "Electricity", "amount": 1200, "due_date": "2024-03-20",
             "reminder_time": "3-days-before"},
            "user-1",
        )
        assert reminder.due_date == date(2024, 3, 20)
        assert not reminder.is_paid


class TestDuplicateGoals:
    """Goal titles are unique per owner, case-insensitively."""

    def test_find_duplicate(self):
        existing = SavingsGoal(owner_id="user-1", title="Vacation")
        other_owner = SavingsGoal(owner_id="user-2", title="Car")
        goals = [existing, other_owner]

        assert LedgerValidator.find_duplicate_goal(" vacation ", goals, "user-1") is existing
        assert LedgerValidator.find_duplicate_goal("Car", goals, "user-1") is None
        assert LedgerValidator.find_duplicate_goal(
            "Vacation", goals, "user-1", exclude_id=existing.id
        ) is None

    def test_check_goal_title_raises(self, validator):
        existing = SavingsGoal(owner_id="user-1", title="Vacation")
        with pytest.raises(DuplicateGoalError) as exc_info:
            validator.check_goal_title("VACATION", [existing], "user-1")
        assert exc_info.value.existing is existing
        assert isinstance(exc_info.value, ValidationError)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
