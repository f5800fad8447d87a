"""
Bill Reminders

One-off reminders to pay a bill, stored next to the rest of the ledger
under the billReminders collection.

A reminder is due when it is unpaid and today falls in its reminder window:
    same-day       - on the due date
    1-day-before   - the day before the due date
    3-days-before  - any of the three days before the due date, or on it
"""

from datetime import date
from typing import Any, Callable, Mapping, Optional
from uuid import UUID

import structlog

from ledgersync.audit import AuditLogger, create_correlation_id
from ledgersync.models.audit import AuditEventType
from ledgersync.models.ledger import BillReminder, EntityKind, ReminderTime
from ledgersync.services.storage import (
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    decode_documents,
)
from ledgersync.validation import LedgerValidator, ValidationError
from ledgersync.working_set import WorkingCollection


# Days-until-due accepted by each reminder time
_REMINDER_WINDOWS: dict[ReminderTime, range] = {
    ReminderTime.SAME_DAY: range(0, 1),
    ReminderTime.ONE_DAY_BEFORE: range(1, 2),
    ReminderTime.THREE_DAYS_BEFORE: range(0, 4),
}


def is_reminder_due(reminder: BillReminder, today: date) -> bool:
    """Is this reminder in its window on the given day?"""
    if reminder.is_paid:
        return False
    days_until = (reminder.due_date - today).days
    return days_until in _REMINDER_WINDOWS[reminder.reminder_time]


class BillReminderService:
    """Keeps an owner's bill reminders and reports which are due."""

    def __init__(
        self,
        owner_id: str,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        today: Callable[[], date] = date.today,
    ):
        self._owner_id = owner_id
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._today = today
        self._reminders = WorkingCollection(EntityKind.BILL_REMINDERS)
        self._logger = structlog.get_logger(__name__).bind(owner_id=owner_id)

    @property
    def reminders(self) -> list[BillReminder]:
        """All reminders, soonest due first."""
        return sorted(self._reminders.items(), key=lambda r: r.due_date)

    async def load(self) -> list[BillReminder]:
        """
        Raises:
            StorageError: If the store cannot be read
            ValidationError: If a stored reminder is malformed
        """
        documents = await self._store.list_for_owner(EntityKind.BILL_REMINDERS, self._owner_id)
        self._reminders.replace_all(
            decode_documents(EntityKind.BILL_REMINDERS, documents, self._owner_id)
        )
        return self.reminders

    async def _save(
        self,
        reminder: BillReminder,
        event_type: AuditEventType,
        correlation_id: UUID,
    ) -> None:
        delete = event_type == AuditEventType.ENTITY_DELETED
        previous = (
            self._reminders.remove_local(reminder.id)
            if delete
            else self._reminders.apply_local(reminder)
        )
        try:
            if delete:
                await self._store.delete(EntityKind.BILL_REMINDERS, reminder.id, self._owner_id)
            else:
                await self._store.create_or_replace(EntityKind.BILL_REMINDERS, reminder)
        except StorageError as e:
            self._reminders.restore(reminder.id, previous)
            self._logger.error("reminder_persist_failed", reminder_id=str(reminder.id), error=str(e))
            await self._audit.log_storage_failed(
                self._owner_id,
                EntityKind.BILL_REMINDERS.value,
                reminder.id,
                str(e),
                correlation_id,
            )
            raise
        await self._audit.log_entity_changed(
            event_type,
            self._owner_id,
            EntityKind.BILL_REMINDERS.value,
            reminder.id,
            {"title": reminder.title, "due_date": reminder.due_date.isoformat()},
            correlation_id,
        )

    async def add_reminder(self, data: Mapping[str, Any]) -> BillReminder:
        """
        New reminders always start unpaid.

        Raises:
            ValidationError: If the input is invalid
            StorageError: If persisting fails
        """
        correlation_id = create_correlation_id()
        payload = {k: v for k, v in data.items() if k not in ("is_paid", "isPaid")}
        try:
            reminder = self._validator.build_bill_reminder(payload, self._owner_id)
        except ValidationError as e:
            await self._audit.log_validation_failed(
                self._owner_id,
                EntityKind.BILL_REMINDERS.value,
                e.issues_as_dicts(),
                correlation_id,
            )
            raise
        await self._save(reminder, AuditEventType.ENTITY_CREATED, correlation_id)
        return reminder

    def _get(self, reminder_id: UUID) -> BillReminder:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Bill reminder not found: {reminder_id}")
        return reminder

    async def delete_reminder(self, reminder_id: UUID) -> None:
        await self._save(
            self._get(reminder_id), AuditEventType.ENTITY_DELETED, create_correlation_id()
        )

    async def mark_as_paid(self, reminder_id: UUID) -> BillReminder:
        paid = self._get(reminder_id).model_copy(update={"is_paid": True})
        await self._save(paid, AuditEventType.ENTITY_UPDATED, create_correlation_id())
        return paid

    def due_reminders(self, today: Optional[date] = None) -> list[BillReminder]:
        """Unpaid reminders whose window includes today, soonest due first."""
        today = today or self._today()
        return [r for r in self.reminders if is_reminder_due(r, today)]
