"""
Tests for Ledger Sync

Test strategy:
1. Unit tests for individual components (models, validators, aggregation)
2. Integration tests for the coordinator against the in-memory store
3. No real API calls in tests (Google Sheets is faked)
"""

import pytest
from datetime import date
from uuid import uuid4

from ledgersync.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    BankAccount,
    Budget,
    BudgetPeriod,
    EntityKind,
    Expense,
    Frequency,
    Income,
    LedgerState,
    SavingsGoal,
    round_to_two_decimals,
    validate_and_round_amount,
)


class TestAmountRounding:
    """Tests for money rounding at the point of input."""

    def test_rounds_half_up(self):
        """250.555 rounds up to 250.56, not down to the binary neighbour."""
        assert round_to_two_decimals(250.555) == 250.56
        assert round_to_two_decimals("0.125") == 0.13

    def test_validate_and_round_amount_accepts_numeric_strings(self):
        assert validate_and_round_amount(" 12.345 ") == 12.35
        assert validate_and_round_amount(1000) == 1000.0
        assert validate_and_round_amount("0") == 0.0

    @pytest.mark.parametrize(
        "raw", ["abc", "", "-5", -0.01, None, True, "nan", "inf", 1e30, "1e400", 10**40]
    )
    def test_validate_and_round_amount_rejects_bad_input(self, raw):
        assert validate_and_round_amount(raw) is None


class TestLedgerModels:
    """Tests for ledger entity models."""

    def test_income_amount_rounded_on_input(self):
        income = Income(
            owner_id="user-1",
            bank_account_id=uuid4(),
            amount="250.555",
            date=date(2024, 3, 5),
            source="Salary",
        )
        assert income.amount == 250.56
        assert income.frequency == Frequency.ONE_TIME

    def test_negative_amount_rejected(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            Expense(
                owner_id="user-1",
                bank_account_id=uuid4(),
                amount=-10,
                date=date(2024, 3, 5),
                category="food",
            )

    def test_documents_use_camel_case(self):
        account_id = uuid4()
        expense = Expense(
            owner_id="user-1",
            bank_account_id=account_id,
            amount=12.5,
            date=date(2024, 3, 5),
            category="food",
            is_recurring=True,
            next_due_date=date(2024, 4, 5),
        )
        document = expense.model_dump(mode="json", by_alias=True)
        assert document["bankAccountId"] == str(account_id)
        assert document["ownerId"] == "user-1"
        assert document["isRecurring"] is True
        assert document["nextDueDate"] == "2024-04-05"

    def test_models_accept_camel_case_documents(self):
        account = BankAccount.model_validate(
            {
                "ownerId": "user-1",
                "name": "Main",
                "startingBalance": "1000",
                "totalIncome": 1000,
            }
        )
        assert account.starting_balance == 1000.0
        assert account.total_income == 1000.0

    def test_account_display_name_prefers_nickname(self):
        account = BankAccount(owner_id="u", name="HDFC Savings", nickname="Daily")
        assert account.display_name == "Daily"
        assert BankAccount(owner_id="u", name="HDFC Savings").display_name == "HDFC Savings"

    def test_budget_defaults(self):
        budget = Budget(owner_id="u", category="food", budget_amount=1000)
        assert budget.period == BudgetPeriod.MONTHLY
        assert budget.alert_threshold == 80
        assert budget.bank_account_id is None

    def test_budget_alert_threshold_bounds(self):
        with pytest.raises(ValueError):
            Budget(owner_id="u", category="food", budget_amount=1000, alert_threshold=120)

    def test_budget_alert_threshold_accepts_fractions(self):
        budget = Budget(owner_id="u", category="food", budget_amount=1000, alert_threshold=82.5)
        assert budget.alert_threshold == 82.5

    def test_goal_auto_tracked_amount_never_negative(self):
        with pytest.raises(ValueError):
            SavingsGoal(owner_id="u", title="Car", auto_tracked_amount=-1)

    def test_goal_scope(self):
        account_id = uuid4()
        unscoped = SavingsGoal(owner_id="u", title="Vacation")
        scoped = SavingsGoal(owner_id="u", title="Car", bank_account_id=account_id)
        assert unscoped.covers_account(account_id)
        assert scoped.covers_account(account_id)
        assert not scoped.covers_account(uuid4())
        assert unscoped.title_key == "vacation"

    def test_entity_kind_scoping(self):
        assert EntityKind.INCOMES.is_account_scoped
        assert EntityKind.EXPENSES.is_account_scoped
        assert not EntityKind.BUDGETS.is_account_scoped
        assert EntityKind.SAVINGS_GOALS.value == "savingsGoals"

    def test_ledger_state_is_frozen(self):
        state = LedgerState()
        with pytest.raises(ValueError):
            state.loading = True


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            description="Bank account created: Main",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        entity_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.ENTITY_CREATED,
            owner_id="user-1",
            entity_type="incomes",
            entity_id=entity_id,
            description="incomes created",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "entity_created"
        assert log_dict["entity_id"] == str(entity_id)
        assert log_dict["owner_id"] == "user-1"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to Google Sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.STORAGE_FAILED,
            severity=AuditSeverity.ERROR,
            description="Persisting incomes failed",
            details={"attempt": 1},
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "storage_failed"
        assert row[3] == "error"
        assert row[9] == '{"attempt": 1}'
        assert row[11] == "False"

    def test_builder_snapshot_applied_warns_when_pending_dropped(self):
        account_id = uuid4()
        quiet = AuditEventBuilder.snapshot_applied("u", account_id, "expenses", 2, [])
        loud = AuditEventBuilder.snapshot_applied("u", account_id, "expenses", 2, [uuid4()])
        assert quiet.severity == AuditSeverity.DEBUG
        assert loud.severity == AuditSeverity.WARNING
        assert len(loud.details["dropped_pending"]) == 1

    def test_builder_duplicate_goal_rejected(self):
        goal_id = uuid4()
        event = AuditEventBuilder.duplicate_goal_rejected("u", "Vacation", goal_id)
        assert event.event_type == AuditEventType.DUPLICATE_GOAL_REJECTED
        assert event.entity_id == goal_id
        assert event.is_user_action


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
