"""
Input Validation

DESIGN DECISION: Validation happens BEFORE anything touches the working set.
Raw user input (form values, possibly strings) goes in; either a typed,
rounded entity comes out or a ValidationError listing every problem is
raised. The working set is never left half-updated by bad input.

Two layers of checks:
1. Amount checks - numeric, non-negative, under the sanity cap
2. Schema checks - required fields, types, enum values (pydantic)

Duplicate goal titles are checked separately because they depend on the
goals already loaded, not on the input alone.

IMPORTANT: Validation NEVER silently fixes issues beyond rounding money to
cents. Everything else is reported back to the caller.
"""

from typing import Any, Iterable, Mapping, Optional, TypeVar
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ledgersync.config import LedgerSettings, get_settings
from ledgersync.models.ledger import (
    BankAccount,
    BillReminder,
    Budget,
    Expense,
    Income,
    LedgerEntity,
    SavingsGoal,
    ValidationIssue,
    validate_and_round_amount,
)


EntityT = TypeVar("EntityT", bound=LedgerEntity)


class ValidationError(Exception):
    """Input rejected before mutation. Carries every issue found."""

    def __init__(self, entity_type: str, issues: list[ValidationIssue]):
        self.entity_type = entity_type
        self.issues = issues
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues)
        super().__init__(f"Invalid {entity_type}: {summary}")

    def issues_as_dicts(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]


class DuplicateGoalError(ValidationError):
    """A savings goal with the same title already exists for this owner."""

    def __init__(self, title: str, existing: SavingsGoal):
        self.title = title
        self.existing = existing
        super().__init__(
            "savings goal",
            [
                ValidationIssue(
                    field="title",
                    issue_type="duplicate",
                    message=f"A goal with this title already exists: {title}",
                )
            ],
        )


# Fields holding money, per entity type
_AMOUNT_FIELDS: dict[type[LedgerEntity], tuple[str, ...]] = {
    BankAccount: ("starting_balance",),
    Income: ("amount",),
    Expense: ("amount",),
    Budget: ("budget_amount",),
    SavingsGoal: ("target_amount", "current_amount"),
    BillReminder: ("amount",),
}


def issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    """Translate pydantic's error list into ValidationIssues."""
    return [
        ValidationIssue(
            field=".".join(str(part) for part in err["loc"]) or "__root__",
            issue_type=err["type"],
            message=err["msg"],
        )
        for err in error.errors()
    ]


class LedgerValidator:
    """
    Turns raw input into validated entities.

    One validator is shared by the coordinator and the reminder service.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _check_amounts(
        self,
        model: type[LedgerEntity],
        payload: Mapping[str, Any],
    ) -> list[ValidationIssue]:
        issues = []
        for name in _AMOUNT_FIELDS.get(model, ()):
            key = name if name in payload else to_camel(name)
            if key not in payload:
                continue  # Missing required fields are reported by pydantic
            raw = payload[key]
            amount = validate_and_round_amount(raw)
            if amount is None:
                issues.append(
                    ValidationIssue(
                        field=name,
                        issue_type="invalid_amount",
                        message=f"Must be a non-negative number, got {raw!r}",
                    )
                )
            elif amount > self._settings.max_amount:
                issues.append(
                    ValidationIssue(
                        field=name,
                        issue_type="suspicious_value",
                        message=(
                            f"{amount:,.2f} exceeds the maximum of "
                            f"{self._settings.max_amount:,.2f}"
                        ),
                    )
                )
        return issues

    def build(
        self,
        model: type[EntityT],
        data: Mapping[str, Any],
        owner_id: str,
        entity_type: Optional[str] = None,
    ) -> EntityT:
        """
        Validate raw input and build an entity owned by owner_id.

        Raises:
            ValidationError: Listing every problem found
        """
        entity_type = entity_type or model.__name__
        payload = {k: v for k, v in data.items() if k not in ("ownerId", "owner_id")}
        payload["owner_id"] = owner_id

        issues = self._check_amounts(model, payload)
        if issues:
            raise ValidationError(entity_type, issues)

        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(entity_type, issues_from_pydantic(e)) from e

    def revalidate(self, entity: EntityT, owner_id: str) -> EntityT:
        """
        Re-run validation on an edited entity.

        pydantic does not validate attribute assignment, so an entity edited
        in place is validated again before it is accepted.
        """
        data = entity.model_dump(exclude={"owner_id"})
        return self.build(type(entity), data, owner_id)

    def build_income(self, data: Mapping[str, Any], owner_id: str) -> Income:
        return self.build(Income, data, owner_id, "income")

    def build_expense(self, data: Mapping[str, Any], owner_id: str) -> Expense:
        return self.build(Expense, data, owner_id, "expense")

    def build_bank_account(self, data: Mapping[str, Any], owner_id: str) -> BankAccount:
        # Totals are derived; whatever the caller sent is discarded
        derived = {
            "total_income", "total_expense", "current_balance",
            "totalIncome", "totalExpense", "currentBalance",
        }
        clean = {k: v for k, v in data.items() if k not in derived}
        return self.build(BankAccount, clean, owner_id, "bank account")

    def build_budget(self, data: Mapping[str, Any], owner_id: str) -> Budget:
        payload = dict(data)
        if "alert_threshold" not in payload and "alertThreshold" not in payload:
            payload["alert_threshold"] = self._settings.default_alert_threshold
        return self.build(Budget, payload, owner_id, "budget")

    def build_savings_goal(self, data: Mapping[str, Any], owner_id: str) -> SavingsGoal:
        return self.build(SavingsGoal, data, owner_id, "savings goal")

    def build_bill_reminder(self, data: Mapping[str, Any], owner_id: str) -> BillReminder:
        return self.build(BillReminder, data, owner_id, "bill reminder")

    @staticmethod
    def find_duplicate_goal(
        title: str,
        goals: Iterable[SavingsGoal],
        owner_id: str,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[SavingsGoal]:
        """Existing goal of this owner whose title matches case-insensitively."""
        key = title.strip().lower()
        for goal in goals:
            if goal.id == exclude_id:
                continue
            if goal.owner_id == owner_id and goal.title_key == key:
                return goal
        return None

    def check_goal_title(
        self,
        title: str,
        goals: Iterable[SavingsGoal],
        owner_id: str,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            DuplicateGoalError: If the title is already taken
        """
        existing = self.find_duplicate_goal(title, goals, owner_id, exclude_id)
        if existing is not None:
            raise DuplicateGoalError(title, existing)
