"""
Working Set

The coordinator's in-memory copy of one account's transactions, budgets
and goals.

DESIGN DECISION: Every entry is tagged with where its current value came
from:
- LOCAL_PENDING: applied by a local mutation, not yet seen in a snapshot
- REMOTE_CONFIRMED: delivered by a remote snapshot

A snapshot replaces a collection wholesale. Pending entries the snapshot
does not contain are dropped, and the ids dropped are reported back so the
convergence is visible (and testable) instead of depending on timing.
"""

from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ledgersync.models.ledger import EntityKind, LedgerEntity


class EntryOrigin(str, Enum):
    """Where the current value of a working-set entry came from."""
    LOCAL_PENDING = "local_pending"
    REMOTE_CONFIRMED = "remote_confirmed"


class TrackedEntry(BaseModel):
    """An entity plus the channel that put it in the working set."""
    model_config = ConfigDict(frozen=True)

    entity: LedgerEntity
    origin: EntryOrigin

    @property
    def is_pending(self) -> bool:
        return self.origin == EntryOrigin.LOCAL_PENDING


class WorkingCollection:
    """
    One collection of the working set, keyed by entity id.

    Iteration order is insertion order; a snapshot defines a fresh order.
    """

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._entries: dict[UUID, TrackedEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: UUID) -> bool:
        return entity_id in self._entries

    def items(self) -> list[LedgerEntity]:
        return [entry.entity for entry in self._entries.values()]

    def get(self, entity_id: UUID) -> Optional[LedgerEntity]:
        entry = self._entries.get(entity_id)
        return entry.entity if entry else None

    def entry(self, entity_id: UUID) -> Optional[TrackedEntry]:
        return self._entries.get(entity_id)

    def apply_local(self, entity: LedgerEntity) -> Optional[TrackedEntry]:
        """
        Add or replace an entity as a local pending change.

        Returns the entry it replaced (None for an add), for reverting.
        """
        previous = self._entries.get(entity.id)
        self._entries[entity.id] = TrackedEntry(
            entity=entity,
            origin=EntryOrigin.LOCAL_PENDING,
        )
        return previous

    def remove_local(self, entity_id: UUID) -> Optional[TrackedEntry]:
        """Remove an entity; returns the removed entry, for reverting."""
        return self._entries.pop(entity_id, None)

    def restore(self, entity_id: UUID, previous: Optional[TrackedEntry]) -> None:
        """Undo apply_local/remove_local for one id."""
        if previous is None:
            self._entries.pop(entity_id, None)
        else:
            self._entries[entity_id] = previous

    def replace_from_snapshot(self, entities: Iterable[LedgerEntity]) -> list[UUID]:
        """
        Replace the whole collection with confirmed remote contents.

        Returns the ids of pending local entries the snapshot did not
        contain; they are gone from the working set afterwards.
        """
        fresh = {
            entity.id: TrackedEntry(entity=entity, origin=EntryOrigin.REMOTE_CONFIRMED)
            for entity in entities
        }
        dropped = [
            entity_id for entity_id, entry in self._entries.items()
            if entry.is_pending and entity_id not in fresh
        ]
        self._entries = fresh
        return dropped

    def replace_all(self, entities: Iterable[LedgerEntity]) -> None:
        """Load a collection read directly from the store (confirmed)."""
        self._entries = {
            entity.id: TrackedEntry(entity=entity, origin=EntryOrigin.REMOTE_CONFIRMED)
            for entity in entities
        }

    def pending_ids(self) -> list[UUID]:
        return [i for i, entry in self._entries.items() if entry.is_pending]

    def is_confirmed(self, entity_id: UUID) -> bool:
        entry = self._entries.get(entity_id)
        return entry is not None and not entry.is_pending

    def clear(self) -> None:
        self._entries.clear()
