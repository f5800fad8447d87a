"""
Consistency Coordinator for Ledger Sync

This module ties together the store, the working set, the selection
controller and the aggregation engine. It keeps every derived aggregate
(account totals, goal auto-tracking, budget progress) consistent with the
current transaction set across two update channels:
1. Local mutations (user actions), applied optimistically
2. Remote snapshots (full collections pushed by the store)

DESIGN DECISION: The coordinator enforces the boundaries:
- Input is validated before anything is mutated
- Recomputation is synchronous; the only suspension points are store calls
- A failed write reverts the optimistic change and is re-raised
- A remote snapshot replaces its collection wholesale (snapshot wins)
- Every mutation is audited under one correlation id

One coordinator is built per authenticated session (see create_session).
There is no module level state.
"""

import asyncio
from datetime import date
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID

import structlog

from ledgersync.aggregation import (
    budget_progress,
    financial_summary,
    monthly_financial_summary,
)
from ledgersync.audit import AuditLogger, create_correlation_id
from ledgersync.config import LedgerSettings, get_settings
from ledgersync.models.audit import AuditEventType
from ledgersync.models.ledger import (
    BankAccount,
    Budget,
    EntityKind,
    Expense,
    Frequency,
    Income,
    LedgerEntity,
    SavingsGoal,
    ValidationIssue,
)
from ledgersync.models.summary import FinancialSummary, LedgerState
from ledgersync.reminders import BillReminderService
from ledgersync.selection import SelectionController
from ledgersync.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    SubscriptionError,
    Unsubscribe,
    decode_documents,
    owner_path,
)
from ledgersync.validation import LedgerValidator, ValidationError
from ledgersync.working_set import TrackedEntry, WorkingCollection


StateListener = Callable[[LedgerState], None]
_Checkpoint = list[tuple[WorkingCollection, UUID, Optional[TrackedEntry]]]

_WATCHED_KINDS = (EntityKind.INCOMES, EntityKind.EXPENSES)


def _kind_name(error: SubscriptionError) -> str:
    return error.kind.value if error.kind else "unknown"


class ConsistencyCoordinator:
    """
    Stateful core of the ledger.

    Owns the working set for the selected account and publishes a frozen
    LedgerState after every recomputation. Consumers read `state` (or
    register with on_state_change) and call the operations below; they
    never mutate aggregates themselves.
    """

    def __init__(
        self,
        owner_id: str,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        settings: Optional[LedgerSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        self._owner_id = owner_id
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator(self._settings)
        self._today = today
        self._logger = structlog.get_logger(__name__).bind(owner_id=owner_id)

        # Working set. Incomes/expenses hold the selected account only;
        # accounts, budgets and goals hold everything the owner has.
        self._accounts = WorkingCollection(EntityKind.BANK_ACCOUNTS)
        self._incomes = WorkingCollection(EntityKind.INCOMES)
        self._expenses = WorkingCollection(EntityKind.EXPENSES)
        self._budgets = WorkingCollection(EntityKind.BUDGETS)
        self._goals = WorkingCollection(EntityKind.SAVINGS_GOALS)

        self._selection = SelectionController(self._on_scope_change)
        self._unsubscribers: list[Unsubscribe] = []
        self._subscribed_account_id: Optional[UUID] = None
        self._awaiting_initial: set[EntityKind] = set()
        self._refreshing = False
        self._error: Optional[str] = None

        self._listeners: list[StateListener] = []
        self._background: set[asyncio.Task] = set()
        self._state = LedgerState()

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def selected_account_id(self) -> Optional[UUID]:
        return self._selection.selected_id

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with every newly published state.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _in_scope(self, entity: LedgerEntity, account_id: Optional[UUID]) -> bool:
        scope = getattr(entity, "bank_account_id", None)
        return scope is None or scope == account_id

    def _publish(self) -> None:
        selected_id = self._selection.selected_id
        selected = self._accounts.get(selected_id) if selected_id else None
        expenses = [e.model_copy() for e in self._expenses.items()]
        budgets = [
            b.model_copy() for b in self._budgets.items() if self._in_scope(b, selected_id)
        ]
        ref_date = self._today()

        self._state = LedgerState(
            bank_accounts=tuple(a.model_copy() for a in self._accounts.items()),
            selected_bank_account=selected.model_copy() if selected else None,
            incomes=tuple(i.model_copy() for i in self._incomes.items()),
            expenses=tuple(expenses),
            budgets=tuple(budgets),
            savings_goals=tuple(
                g.model_copy() for g in self._goals.items() if self._in_scope(g, selected_id)
            ),
            budget_progress_by_budget_id={
                b.id: budget_progress(expenses, b, ref_date) for b in budgets
            },
            loading=self._refreshing or bool(self._awaiting_initial),
            error=self._error,
        )
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                self._logger.exception("state_listener_failed")

    # ------------------------------------------------------------------
    # Loading and selection
    # ------------------------------------------------------------------

    async def start(self) -> LedgerState:
        """Load the owner's data and select the first account."""
        await self.refresh_data()
        return self._state

    async def refresh_data(self) -> None:
        """
        Reload accounts, budgets and goals from the store.

        Duplicate goals found while loading are deleted, keeping the
        earliest. If nothing is selected yet the first account is selected.

        Raises:
            StorageError: If the store cannot be read
            ValidationError: If stored documents are malformed
        """
        self._refreshing = True
        self._publish()
        try:
            accounts = await self._load(EntityKind.BANK_ACCOUNTS)
            budgets = await self._load(EntityKind.BUDGETS)
            goals = await self._remove_duplicate_goals(await self._load(EntityKind.SAVINGS_GOALS))
        except (StorageError, ValidationError) as e:
            self._refreshing = False
            self._error = str(e)
            self._publish()
            self._logger.error("refresh_failed", error=str(e))
            raise

        accounts.sort(key=lambda a: a.created_at)
        self._accounts.replace_all(accounts)
        self._budgets.replace_all(budgets)
        self._goals.replace_all(goals)
        self._refreshing = False
        self._error = None

        changed = await self._selection.on_accounts_loaded([a.id for a in accounts])
        if not changed:
            await self.recompute_all()

    async def _load(
        self,
        kind: EntityKind,
        account_scope: Optional[UUID] = None,
    ) -> list[Any]:
        documents = await self._store.list_for_owner(kind, self._owner_id, account_scope)
        return decode_documents(kind, documents, self._owner_id)

    async def _remove_duplicate_goals(self, goals: list[SavingsGoal]) -> list[SavingsGoal]:
        kept: dict[str, SavingsGoal] = {}
        for goal in sorted(goals, key=lambda g: g.created_at):
            original = kept.get(goal.title_key)
            if original is None:
                kept[goal.title_key] = goal
                continue
            self._logger.warning(
                "duplicate_goal_removed",
                goal_id=str(goal.id),
                title=goal.title,
                kept_goal_id=str(original.id),
            )
            await self._store.delete(EntityKind.SAVINGS_GOALS, goal.id, self._owner_id)
            await self._audit.log_duplicate_goal_removed(
                self._owner_id, goal.id, goal.title, original.id
            )
        survivors = {g.id for g in kept.values()}
        return [g for g in goals if g.id in survivors]

    async def set_selected_account(
        self,
        account: Union[BankAccount, UUID, None],
    ) -> None:
        """
        Switch the working scope to another account (or none).

        Raises:
            NotFoundError: If the account is unknown
        """
        account_id = account.id if isinstance(account, BankAccount) else account
        if account_id is not None and account_id not in self._accounts:
            raise NotFoundError(f"Bank account not found: {account_id}")
        await self._selection.select(account_id)

    async def _on_scope_change(self, account_id: Optional[UUID]) -> None:
        # Old listeners go first so nothing is delivered against the new scope
        self._unsubscribe_all()
        self._incomes.clear()
        self._expenses.clear()
        self._error = None

        subscription_error = None
        if account_id is not None:
            subscription_error = self._subscribe(account_id)
        self._publish()

        await self._audit.log_account_selected(self._owner_id, account_id)
        if subscription_error is not None:
            await self._audit.log_subscription_failed(
                self._owner_id, account_id, _kind_name(subscription_error), str(subscription_error)
            )
        if account_id is None:
            return

        try:
            incomes = await self._load(EntityKind.INCOMES, account_id)
            expenses = await self._load(EntityKind.EXPENSES, account_id)
        except (StorageError, ValidationError) as e:
            self._error = str(e)
            self._publish()
            raise

        if self._selection.selected_id != account_id:
            return  # Superseded by a later selection
        self._incomes.replace_all(incomes)
        self._expenses.replace_all(expenses)
        await self.recompute_all()

    # ------------------------------------------------------------------
    # Remote channel
    # ------------------------------------------------------------------

    def _subscribe(self, account_id: UUID) -> Optional[SubscriptionError]:
        self._subscribed_account_id = account_id
        self._awaiting_initial = set(_WATCHED_KINDS)
        for kind in _WATCHED_KINDS:
            try:
                self._unsubscribers.append(
                    self._store.subscribe_collection(
                        owner_path(self._owner_id),
                        account_id,
                        kind,
                        self._snapshot_handler(account_id, kind),
                        self._error_handler(account_id),
                    )
                )
            except SubscriptionError as e:
                self._logger.error(
                    "subscription_failed",
                    account_id=str(account_id),
                    collection=kind.value,
                    error=str(e),
                )
                self._error = str(e)
                self._awaiting_initial.clear()
                return e
        return None

    def _unsubscribe_all(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._subscribed_account_id = None
        self._awaiting_initial.clear()

    async def retry_subscriptions(self) -> bool:
        """
        Resubscribe the selected account's live collections.

        Returns True if the subscriptions are live again.
        """
        account_id = self._selection.selected_id
        if account_id is None:
            return False
        self._unsubscribe_all()
        self._error = None
        error = self._subscribe(account_id)
        self._publish()
        if error is not None:
            await self._audit.log_subscription_failed(
                self._owner_id, account_id, _kind_name(error), str(error)
            )
            return False
        self._logger.info("subscriptions_restored", account_id=str(account_id))
        return True

    def _is_current(self, account_id: UUID) -> bool:
        return (
            account_id == self._selection.selected_id
            and account_id == self._subscribed_account_id
            and account_id in self._accounts
        )

    def _snapshot_handler(self, account_id: UUID, kind: EntityKind):
        async def on_snapshot(documents: list[dict]) -> None:
            await self.apply_snapshot(account_id, kind, documents)

        return on_snapshot

    def _error_handler(self, account_id: UUID):
        def on_error(error: SubscriptionError) -> None:
            if not self._is_current(account_id):
                return
            self._logger.error("subscription_failed", account_id=str(account_id), error=str(error))
            self._error = str(error)
            self._awaiting_initial.clear()
            self._publish()
            self._spawn(
                self._audit.log_subscription_failed(
                    self._owner_id,
                    account_id,
                    _kind_name(error),
                    str(error),
                )
            )

        return on_error

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def apply_snapshot(
        self,
        account_id: UUID,
        kind: EntityKind,
        documents: list[dict],
    ) -> bool:
        """
        Reconcile one remote snapshot of an account's incomes or expenses.

        The snapshot replaces the collection wholesale, then the account's
        totals are recomputed from it. Returns False if the snapshot was
        ignored (stale account) or rejected (malformed).
        """
        if not self._is_current(account_id):
            self._logger.info(
                "stale_snapshot_ignored", account_id=str(account_id), collection=kind.value
            )
            await self._audit.log_stale_snapshot(self._owner_id, account_id, kind.value)
            return False

        try:
            entities = decode_documents(kind, documents, self._owner_id)
            misplaced = [
                ValidationIssue(
                    field=f"[{index}].bankAccountId",
                    issue_type="wrong_account",
                    message=f"Document {entity.id} belongs to another account",
                )
                for index, entity in enumerate(entities)
                if entity.bank_account_id != account_id
            ]
            if misplaced:
                raise ValidationError(f"{kind.value} snapshot", misplaced)
        except ValidationError as e:
            # Rejected as a whole; the working set keeps its last good contents
            self._error = str(e)
            self._awaiting_initial.discard(kind)
            self._publish()
            self._logger.error("snapshot_rejected", collection=kind.value, error=str(e))
            await self._audit.log_snapshot_rejected(
                self._owner_id, account_id, kind.value, e.issues_as_dicts()
            )
            return False

        collection = self._collection(kind)
        dropped = collection.replace_from_snapshot(entities)
        self._awaiting_initial.discard(kind)
        self._error = None
        self._apply_totals(account_id, self._incomes.items(), self._expenses.items())
        self._publish()

        if dropped:
            self._logger.warning(
                "pending_changes_dropped",
                collection=kind.value,
                dropped=[str(i) for i in dropped],
            )
        await self._audit.log_snapshot_applied(
            self._owner_id, account_id, kind.value, len(entities), dropped
        )
        try:
            await self._persist_totals(account_id)
        except StorageError as e:
            self._logger.error("persist_totals_failed", account_id=str(account_id), error=str(e))
            await self._audit.log_storage_failed(
                self._owner_id, EntityKind.BANK_ACCOUNTS.value, account_id, str(e)
            )
        return True

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def _collection(self, kind: EntityKind) -> WorkingCollection:
        return {
            EntityKind.BANK_ACCOUNTS: self._accounts,
            EntityKind.INCOMES: self._incomes,
            EntityKind.EXPENSES: self._expenses,
            EntityKind.BUDGETS: self._budgets,
            EntityKind.SAVINGS_GOALS: self._goals,
        }[kind]

    def _apply_totals(
        self,
        account_id: UUID,
        incomes: list[Income],
        expenses: list[Expense],
    ) -> tuple[BankAccount, list[SavingsGoal]]:
        """Recompute one account's totals and its goals in the working set."""
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Bank account not found: {account_id}")

        total_income = sum(i.amount for i in incomes if i.bank_account_id == account_id)
        total_expense = sum(e.amount for e in expenses if e.bank_account_id == account_id)
        updated = account.model_copy(
            update={
                "total_income": total_income,
                "total_expense": total_expense,
                "current_balance": total_income - total_expense,
            }
        )
        self._accounts.apply_local(updated)

        savings = max(0.0, total_income - total_expense)
        refreshed = []
        for goal in self._goals.items():
            if goal.covers_account(account_id):
                goal = goal.model_copy(update={"auto_tracked_amount": savings})
                self._goals.apply_local(goal)
                refreshed.append(goal)
        return updated, refreshed

    async def _persist_totals(self, account_id: UUID) -> None:
        await self._store.create_or_replace(
            EntityKind.BANK_ACCOUNTS, self._accounts.get(account_id)
        )
        for goal in self._goals.items():
            if goal.covers_account(account_id):
                await self._store.create_or_replace(EntityKind.SAVINGS_GOALS, goal)

    async def recompute_account_totals(
        self,
        account_id: UUID,
        incomes: list[Income],
        expenses: list[Expense],
        correlation_id: Optional[UUID] = None,
    ) -> BankAccount:
        """
        Derive an account's totals from the given transactions and persist.

        total_income and total_expense are plain sums of the account's
        transactions, current_balance is their difference, and every goal
        covering the account gets auto_tracked_amount = max(0, balance).
        Calling it twice with the same inputs yields the same account.

        Raises:
            NotFoundError: If the account is unknown
            StorageError: If persisting the account or a goal fails
        """
        account, goals = self._apply_totals(account_id, incomes, expenses)
        self._publish()
        await self._persist_totals(account_id)
        await self._audit.log_totals_recomputed(
            self._owner_id,
            account_id,
            account.total_income,
            account.total_expense,
            account.current_balance,
            len(goals),
            correlation_id,
        )
        return account

    async def recompute_all(self) -> None:
        """Recompute the selected account and republish everything."""
        account_id = self._selection.selected_id
        if account_id is None or account_id not in self._accounts:
            self._publish()
            return
        await self.recompute_account_totals(
            account_id, self._incomes.items(), self._expenses.items()
        )

    # ------------------------------------------------------------------
    # Shared mutation plumbing
    # ------------------------------------------------------------------

    async def _validated(self, build, data: Mapping[str, Any], kind: EntityKind, correlation_id: UUID):
        try:
            return build(data, self._owner_id)
        except ValidationError as e:
            await self._audit.log_validation_failed(
                self._owner_id, kind.value, e.issues_as_dicts(), correlation_id
            )
            raise

    async def _reject(self, kind: EntityKind, error: ValidationError, correlation_id: UUID):
        await self._audit.log_validation_failed(
            self._owner_id, kind.value, error.issues_as_dicts(), correlation_id
        )
        raise error

    async def _storage_failed(
        self,
        kind: EntityKind,
        entity_id: Optional[UUID],
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        self._logger.error(
            "persist_failed",
            collection=kind.value,
            entity_id=str(entity_id) if entity_id else None,
            error=str(error),
        )
        await self._audit.log_storage_failed(
            self._owner_id, kind.value, entity_id, str(error), correlation_id
        )

    def _checkpoint(self, account_id: UUID) -> _Checkpoint:
        saved = [(self._accounts, account_id, self._accounts.entry(account_id))]
        for goal in self._goals.items():
            if goal.covers_account(account_id):
                saved.append((self._goals, goal.id, self._goals.entry(goal.id)))
        return saved

    @staticmethod
    def _rollback(checkpoint: _Checkpoint) -> None:
        for collection, entity_id, entry in reversed(checkpoint):
            collection.restore(entity_id, entry)

    async def _commit(
        self,
        kind: EntityKind,
        entity: LedgerEntity,
        event_type: AuditEventType,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Optimistic write of a budget, goal or account, reverted on failure."""
        collection = self._collection(kind)
        delete = event_type in (AuditEventType.ENTITY_DELETED, AuditEventType.ACCOUNT_DELETED)
        previous = (
            collection.remove_local(entity.id) if delete else collection.apply_local(entity)
        )
        self._publish()
        try:
            if delete:
                await self._store.delete(kind, entity.id, self._owner_id)
            else:
                await self._store.create_or_replace(kind, entity)
        except StorageError as e:
            collection.restore(entity.id, previous)
            self._publish()
            await self._storage_failed(kind, entity.id, e, correlation_id)
            raise
        await self._audit.log_entity_changed(
            event_type, self._owner_id, kind.value, entity.id, details, correlation_id
        )

    async def _commit_transaction(
        self,
        kind: EntityKind,
        entity: Union[Income, Expense],
        event_type: AuditEventType,
        correlation_id: UUID,
    ) -> None:
        """
        Write an income or expense and bring its account's totals along.

        In the selected account the change is applied to the working set and
        recomputed before the store is touched; a failed write puts the
        transaction, the account and its goals back as they were. For other
        accounts the write goes first and totals are recomputed from what
        the store then holds.
        """
        account_id = entity.bank_account_id
        delete = event_type == AuditEventType.ENTITY_DELETED
        details = {"amount": entity.amount, "account_id": str(account_id)}

        if account_id != self._selection.selected_id:
            try:
                if delete:
                    await self._store.delete(kind, entity.id, self._owner_id)
                else:
                    await self._store.create_or_replace(kind, entity)
                incomes = await self._load(EntityKind.INCOMES, account_id)
                expenses = await self._load(EntityKind.EXPENSES, account_id)
                await self.recompute_account_totals(account_id, incomes, expenses, correlation_id)
            except StorageError as e:
                await self._storage_failed(kind, entity.id, e, correlation_id)
                raise
            await self._audit.log_entity_changed(
                event_type, self._owner_id, kind.value, entity.id, details, correlation_id
            )
            return

        collection = self._collection(kind)
        checkpoint = self._checkpoint(account_id)
        previous = (
            collection.remove_local(entity.id) if delete else collection.apply_local(entity)
        )
        account, goals = self._apply_totals(
            account_id, self._incomes.items(), self._expenses.items()
        )
        self._publish()

        try:
            if delete:
                await self._store.delete(kind, entity.id, self._owner_id)
            else:
                await self._store.create_or_replace(kind, entity)
            await self._persist_totals(account_id)
        except StorageError as e:
            collection.restore(entity.id, previous)
            self._rollback(checkpoint)
            self._publish()
            await self._storage_failed(kind, entity.id, e, correlation_id)
            raise

        await self._audit.log_entity_changed(
            event_type, self._owner_id, kind.value, entity.id, details, correlation_id
        )
        await self._audit.log_totals_recomputed(
            self._owner_id,
            account_id,
            account.total_income,
            account.total_expense,
            account.current_balance,
            len(goals),
            correlation_id,
        )

    def _scoped_input(self, data: Mapping[str, Any]) -> dict:
        payload = dict(data)
        if "bank_account_id" not in payload and "bankAccountId" not in payload:
            if self._selection.selected_id is not None:
                payload["bank_account_id"] = self._selection.selected_id
        return payload

    def _unknown_account(self, kind: EntityKind, account_id: UUID) -> ValidationError:
        return ValidationError(
            kind.value,
            [
                ValidationIssue(
                    field="bank_account_id",
                    issue_type="unknown_account",
                    message=f"No bank account with id {account_id}",
                )
            ],
        )

    async def _add_transaction(self, kind: EntityKind, build, data: Mapping[str, Any]):
        correlation_id = create_correlation_id()
        entity = await self._validated(build, self._scoped_input(data), kind, correlation_id)
        if entity.bank_account_id not in self._accounts:
            await self._reject(kind, self._unknown_account(kind, entity.bank_account_id), correlation_id)
        await self._commit_transaction(kind, entity, AuditEventType.ENTITY_CREATED, correlation_id)
        return entity

    async def _update_transaction(self, kind: EntityKind, entity):
        correlation_id = create_correlation_id()
        current = self._collection(kind).get(entity.id)
        if current is None:
            raise NotFoundError(f"{kind.value} not found: {entity.id}")
        updated = await self._validated(self._validator.revalidate, entity, kind, correlation_id)
        if updated.bank_account_id != current.bank_account_id:
            await self._reject(
                kind,
                ValidationError(
                    kind.value,
                    [
                        ValidationIssue(
                            field="bank_account_id",
                            issue_type="reassignment",
                            message="Transactions cannot move to another bank account",
                        )
                    ],
                ),
                correlation_id,
            )
        await self._commit_transaction(kind, updated, AuditEventType.ENTITY_UPDATED, correlation_id)
        return updated

    async def _delete_transaction(self, kind: EntityKind, entity_id: UUID) -> None:
        current = self._collection(kind).get(entity_id)
        if current is None:
            raise NotFoundError(f"{kind.value} not found: {entity_id}")
        await self._commit_transaction(
            kind, current, AuditEventType.ENTITY_DELETED, create_correlation_id()
        )

    # ------------------------------------------------------------------
    # Incomes and expenses
    # ------------------------------------------------------------------

    async def add_income(self, data: Mapping[str, Any]) -> Income:
        """
        Record an income (defaults to the selected account).

        Raises:
            ValidationError: If the input is invalid; nothing is changed
            StorageError: If persisting fails; the change is reverted
        """
        return await self._add_transaction(EntityKind.INCOMES, self._validator.build_income, data)

    async def update_income(self, income: Income) -> Income:
        return await self._update_transaction(EntityKind.INCOMES, income)

    async def delete_income(self, income_id: UUID) -> None:
        await self._delete_transaction(EntityKind.INCOMES, income_id)

    async def add_expense(self, data: Mapping[str, Any]) -> Expense:
        """
        Record an expense (defaults to the selected account).

        Expenses are persisted exactly like incomes: written to the store
        right away, then confirmed by the next snapshot.
        """
        return await self._add_transaction(EntityKind.EXPENSES, self._validator.build_expense, data)

    async def update_expense(self, expense: Expense) -> Expense:
        return await self._update_transaction(EntityKind.EXPENSES, expense)

    async def delete_expense(self, expense_id: UUID) -> None:
        await self._delete_transaction(EntityKind.EXPENSES, expense_id)

    # ------------------------------------------------------------------
    # Bank accounts
    # ------------------------------------------------------------------

    async def add_bank_account(self, data: Mapping[str, Any]) -> BankAccount:
        """
        Create an account, select it, and seed its starting balance.

        The account starts with zero totals. A positive starting balance is
        recorded as a one-time "Initial Balance" income, which is what
        brings it into total_income.
        """
        correlation_id = create_correlation_id()
        account = await self._validated(
            self._validator.build_bank_account, data, EntityKind.BANK_ACCOUNTS, correlation_id
        )
        self._accounts.apply_local(account)
        self._publish()
        try:
            await self._store.create_or_replace(EntityKind.BANK_ACCOUNTS, account)
        except StorageError as e:
            self._accounts.restore(account.id, None)
            self._publish()
            await self._storage_failed(EntityKind.BANK_ACCOUNTS, account.id, e, correlation_id)
            raise
        await self._audit.log_account_created(
            self._owner_id, account.id, account.name, account.starting_balance, correlation_id
        )

        await self._selection.select(account.id)

        if account.starting_balance > 0:
            await self.add_income(
                {
                    "bank_account_id": account.id,
                    "source": self._settings.initial_balance_source,
                    "amount": account.starting_balance,
                    "frequency": Frequency.ONE_TIME,
                    "date": self._today(),
                    "description": "Initial balance at account creation",
                }
            )
        return self._accounts.get(account.id)

    async def update_bank_account(self, account: BankAccount) -> BankAccount:
        """
        Save edits to an account's descriptive fields.

        Totals and the starting balance are derived or fixed at creation,
        so the values already held for them are kept.
        """
        correlation_id = create_correlation_id()
        current = self._accounts.get(account.id)
        if current is None:
            raise NotFoundError(f"Bank account not found: {account.id}")
        updated = await self._validated(
            self._validator.revalidate, account, EntityKind.BANK_ACCOUNTS, correlation_id
        )
        updated = updated.model_copy(
            update={
                "created_at": current.created_at,
                "starting_balance": current.starting_balance,
                "total_income": current.total_income,
                "total_expense": current.total_expense,
                "current_balance": current.current_balance,
            }
        )
        await self._commit(
            EntityKind.BANK_ACCOUNTS, updated, AuditEventType.ACCOUNT_UPDATED, correlation_id
        )
        return updated

    async def delete_bank_account(self, account_id: UUID) -> None:
        """
        Delete an account together with its incomes and expenses.

        The account document is deleted from the store first; nothing
        local changes if that fails. Then, if it was selected, the next
        remaining account (or none) becomes selected, and its incomes and
        expenses are deleted even when loading the next account fails.
        """
        correlation_id = create_correlation_id()
        if account_id not in self._accounts:
            raise NotFoundError(f"Bank account not found: {account_id}")

        try:
            await self._store.delete(EntityKind.BANK_ACCOUNTS, account_id, self._owner_id)
        except StorageError as e:
            await self._storage_failed(EntityKind.BANK_ACCOUNTS, account_id, e, correlation_id)
            raise

        self._accounts.remove_local(account_id)
        remaining = [a.id for a in self._accounts.items()]
        removed = 0
        try:
            try:
                await self._selection.on_account_deleted(account_id, remaining)
            finally:
                removed = await self._delete_transactions(account_id, correlation_id)
        finally:
            self._publish()
            await self._audit.log_account_deleted(
                self._owner_id, account_id, removed, correlation_id
            )

    async def _delete_transactions(self, account_id: UUID, correlation_id: UUID) -> int:
        removed = 0
        for kind in _WATCHED_KINDS:
            try:
                documents = await self._store.list_for_owner(kind, self._owner_id, account_id)
                for document in documents:
                    await self._store.delete(kind, UUID(str(document["id"])), self._owner_id)
                    removed += 1
            except StorageError as e:
                # The account is already gone; leftovers are orphaned, not revived
                await self._storage_failed(kind, account_id, e, correlation_id)
                raise
        return removed

    # ------------------------------------------------------------------
    # Savings goals
    # ------------------------------------------------------------------

    def _scope_savings(self, account_id: Optional[UUID]) -> float:
        account = self._accounts.get(account_id) if account_id else None
        if account is None:
            return 0.0
        return max(0.0, account.total_income - account.total_expense)

    async def add_savings_goal(self, data: Mapping[str, Any]) -> Optional[SavingsGoal]:
        """
        Create a savings goal.

        A goal whose title matches an existing one (case-insensitively) is
        not created: a warning is logged and None is returned.

        Raises:
            ValidationError: If the input is invalid
            StorageError: If persisting fails; the goal is removed again
        """
        correlation_id = create_correlation_id()
        goal = await self._validated(
            self._validator.build_savings_goal, data, EntityKind.SAVINGS_GOALS, correlation_id
        )
        existing = self._validator.find_duplicate_goal(
            goal.title, self._goals.items(), self._owner_id
        )
        if existing is not None:
            self._logger.warning(
                "duplicate_goal_rejected", title=goal.title, existing_goal_id=str(existing.id)
            )
            await self._audit.log_duplicate_goal_rejected(self._owner_id, goal.title, existing.id)
            return None

        scope = goal.bank_account_id or self._selection.selected_id
        goal = goal.model_copy(update={"auto_tracked_amount": self._scope_savings(scope)})
        await self._commit(
            EntityKind.SAVINGS_GOALS,
            goal,
            AuditEventType.ENTITY_CREATED,
            correlation_id,
            {"title": goal.title, "target_amount": goal.target_amount},
        )
        return goal

    async def update_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        """
        Raises:
            DuplicateGoalError: If the new title belongs to another goal
        """
        correlation_id = create_correlation_id()
        current = self._goals.get(goal.id)
        if current is None:
            raise NotFoundError(f"Savings goal not found: {goal.id}")
        updated = await self._validated(
            self._validator.revalidate, goal, EntityKind.SAVINGS_GOALS, correlation_id
        )
        try:
            self._validator.check_goal_title(
                updated.title, self._goals.items(), self._owner_id, exclude_id=updated.id
            )
        except ValidationError as e:
            await self._reject(EntityKind.SAVINGS_GOALS, e, correlation_id)

        scope = updated.bank_account_id or self._selection.selected_id
        updated = updated.model_copy(
            update={
                "created_at": current.created_at,
                "auto_tracked_amount": self._scope_savings(scope),
            }
        )
        await self._commit(
            EntityKind.SAVINGS_GOALS, updated, AuditEventType.ENTITY_UPDATED, correlation_id
        )
        return updated

    async def delete_savings_goal(self, goal_id: UUID) -> None:
        current = self._goals.get(goal_id)
        if current is None:
            raise NotFoundError(f"Savings goal not found: {goal_id}")
        await self._commit(
            EntityKind.SAVINGS_GOALS,
            current,
            AuditEventType.ENTITY_DELETED,
            create_correlation_id(),
        )

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def add_budget(self, data: Mapping[str, Any]) -> Budget:
        correlation_id = create_correlation_id()
        budget = await self._validated(
            self._validator.build_budget, data, EntityKind.BUDGETS, correlation_id
        )
        await self._commit(
            EntityKind.BUDGETS,
            budget,
            AuditEventType.ENTITY_CREATED,
            correlation_id,
            {"category": budget.category, "budget_amount": budget.budget_amount},
        )
        return budget

    async def update_budget(self, budget: Budget) -> Budget:
        correlation_id = create_correlation_id()
        if budget.id not in self._budgets:
            raise NotFoundError(f"Budget not found: {budget.id}")
        updated = await self._validated(
            self._validator.revalidate, budget, EntityKind.BUDGETS, correlation_id
        )
        await self._commit(
            EntityKind.BUDGETS, updated, AuditEventType.ENTITY_UPDATED, correlation_id
        )
        return updated

    async def delete_budget(self, budget_id: UUID) -> None:
        current = self._budgets.get(budget_id)
        if current is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        await self._commit(
            EntityKind.BUDGETS, current, AuditEventType.ENTITY_DELETED, create_correlation_id()
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def financial_summary(self, ref_date: Optional[date] = None) -> FinancialSummary:
        """
        Summary of the selected account.

        Income is the account's lifetime total_income while expenses cover
        ref_date's month. See monthly_financial_summary for a summary where
        both use the month window.
        """
        state = self._state
        return financial_summary(
            state.incomes,
            state.expenses,
            state.budgets,
            state.selected_bank_account,
            ref_date or self._today(),
            self._settings.upcoming_bills_days,
        )

    def monthly_financial_summary(self, ref_date: Optional[date] = None) -> FinancialSummary:
        state = self._state
        return monthly_financial_summary(
            state.incomes,
            state.expenses,
            state.budgets,
            ref_date or self._today(),
            self._settings.upcoming_bills_days,
        )

    async def close(self) -> None:
        """Stop every live subscription and finish pending audit writes."""
        self._unsubscribe_all()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._listeners.clear()


def create_session(
    owner_id: str,
    store: Optional[LedgerStoreInterface] = None,
    settings: Optional[LedgerSettings] = None,
):
    """
    Factory function to create the components of one user session.

    Args:
        owner_id: Authenticated principal owning the data
        store: Ledger store to use. If None, one is built from the
               configured storage backend.
        settings: Ledger settings (defaults to get_settings().ledger)

    Returns:
        (coordinator, reminder_service)
    """
    settings = settings or get_settings().ledger
    logger = structlog.get_logger(__name__)
    audit_logger = None

    if store is None and settings.storage_backend == "google_sheets":
        try:
            client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryLedgerStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())
    elif audit_logger is None:
        audit_logger = AuditLogger()  # Local-only logging

    validator = LedgerValidator(settings)
    coordinator = ConsistencyCoordinator(
        owner_id,
        store,
        audit_logger=audit_logger,
        validator=validator,
        settings=settings,
    )
    reminders = BillReminderService(
        owner_id,
        store,
        audit_logger=audit_logger,
        validator=validator,
    )
    return coordinator, reminders
