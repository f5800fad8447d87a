"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real-time document store later
2. Use in-memory storage for testing
3. Keep the consistency coordinator decoupled from storage implementation

The ledger store deals in raw documents (plain dicts in the camelCase
remote shape). Turning documents into typed entities is the codec's job,
so loosely-typed remote data never reaches aggregation unchecked.

Live collections are delivered as full snapshots, never deltas. A store
must deliver snapshots for one subscription in the order it produces them.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from ledgersync.models.audit import AuditEvent
from ledgersync.models.ledger import EntityKind, LedgerEntity


Document = dict[str, Any]
SnapshotHandler = Callable[[list[Document]], Awaitable[None]]
SubscriptionErrorHandler = Callable[["SubscriptionError"], None]
Unsubscribe = Callable[[], None]


def owner_path(owner_id: str) -> str:
    """Root path of everything one owner stores."""
    return f"users/{owner_id}"


def collection_path(
    owner_id: str,
    kind: EntityKind,
    account_id: Optional[UUID] = None,
) -> str:
    """
    Path of a collection.

    Incomes and expenses live underneath their bank account:
        users/{owner}/bankAccounts/{account}/incomes
    Everything else lives directly under the owner:
        users/{owner}/budgets
    """
    root = owner_path(owner_id)
    if kind.is_account_scoped:
        if account_id is None:
            raise ValueError(f"{kind.value} are scoped to a bank account")
        return f"{root}/{EntityKind.BANK_ACCOUNTS.value}/{account_id}/{kind.value}"
    return f"{root}/{kind.value}"


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger's durable store.

    Any storage implementation (Google Sheets, a document database, memory)
    must implement these methods.
    """

    @abstractmethod
    async def create_or_replace(self, kind: EntityKind, entity: LedgerEntity) -> None:
        """
        Create the entity, or replace the stored copy with the same id.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, kind: EntityKind, entity_id: UUID, owner_id: str) -> None:
        """
        Delete an entity. Deleting something that does not exist is not an error.

        Raises:
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def list_for_owner(
        self,
        kind: EntityKind,
        owner_id: str,
        account_scope: Optional[UUID] = None,
    ) -> list[Document]:
        """
        List an owner's documents of one kind.

        Args:
            kind: Collection to read
            owner_id: Owner whose documents to return
            account_scope: For incomes/expenses, only this account's documents.
                For other kinds, documents scoped to this account plus those
                with no account scope.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    def subscribe_collection(
        self,
        owner_path: str,
        account_id: UUID,
        kind: EntityKind,
        on_snapshot: SnapshotHandler,
        on_error: Optional[SubscriptionErrorHandler] = None,
    ) -> Unsubscribe:
        """
        Watch one account's incomes or expenses.

        The current contents are delivered first, then a full snapshot after
        every change. Calling the returned function stops delivery at once,
        including snapshots already queued.

        Raises:
            SubscriptionError: If the subscription cannot be set up
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if it was stored."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        """All events of one operation, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events about one entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SubscriptionError(StorageError):
    """A live collection could not be set up or stopped delivering."""

    def __init__(self, message: str, kind: Optional[EntityKind] = None):
        self.kind = kind
        super().__init__(message)
