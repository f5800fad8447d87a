"""
In-Memory Storage Implementation

Behaves like a real-time document store: every write to a watched
collection pushes a full snapshot of that collection to its subscribers.

Delivery model:
- each subscription owns an asyncio.Queue and one delivery task, so
  snapshots for a subscription arrive strictly in the order they were made
- delivery is asynchronous: a write returns before subscribers see it,
  the same way a remote echo arrives after the local write completes
- unsubscribing drops every snapshot still queued for that subscription

Used for tests and for running without any external backend.
"""

import asyncio
import copy
from typing import Optional
from uuid import UUID

import structlog

from ledgersync.models.audit import AuditEvent
from ledgersync.models.ledger import EntityKind, LedgerEntity
from ledgersync.services.storage.codec import encode_entity
from ledgersync.services.storage.interface import (
    AuditStorageInterface,
    Document,
    LedgerStoreInterface,
    SnapshotHandler,
    SubscriptionError,
    SubscriptionErrorHandler,
    Unsubscribe,
    collection_path,
    owner_path,
)


_STOP = object()


class _Subscription:
    """One live listener on one collection path."""

    def __init__(
        self,
        path: str,
        kind: EntityKind,
        handler: SnapshotHandler,
        on_error: Optional[SubscriptionErrorHandler],
    ):
        self.path = path
        self.kind = kind
        self.handler = handler
        self.on_error = on_error
        self.queue: asyncio.Queue = asyncio.Queue()
        self.active = True
        self.task: Optional[asyncio.Task] = None


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Ledger store kept in process memory.

    Collections are keyed by path (see collection_path) and hold documents
    keyed by id, mirroring a document database layout.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, Document]] = {}
        self._subscriptions: list[_Subscription] = []
        self._logger = structlog.get_logger(__name__)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_or_replace(self, kind: EntityKind, entity: LedgerEntity) -> None:
        account_id = getattr(entity, "bank_account_id", None) if kind.is_account_scoped else None
        path = collection_path(entity.owner_id, kind, account_id)
        self._collections.setdefault(path, {})[str(entity.id)] = encode_entity(entity)
        self._notify(path)

    async def delete(self, kind: EntityKind, entity_id: UUID, owner_id: str) -> None:
        key = str(entity_id)
        for path in self._owner_paths(kind, owner_id):
            documents = self._collections[path]
            if key in documents:
                del documents[key]
                self._notify(path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _owner_paths(self, kind: EntityKind, owner_id: str) -> list[str]:
        prefix = owner_path(owner_id) + "/"
        suffix = "/" + kind.value
        return [
            path for path in self._collections
            if path.startswith(prefix) and path.endswith(suffix)
        ]

    def _snapshot(self, path: str) -> list[Document]:
        return copy.deepcopy(list(self._collections.get(path, {}).values()))

    async def list_for_owner(
        self,
        kind: EntityKind,
        owner_id: str,
        account_scope: Optional[UUID] = None,
    ) -> list[Document]:
        if kind.is_account_scoped:
            if account_scope is not None:
                return self._snapshot(collection_path(owner_id, kind, account_scope))
            documents = []
            for path in self._owner_paths(kind, owner_id):
                documents.extend(self._snapshot(path))
            return documents

        documents = self._snapshot(collection_path(owner_id, kind))
        if account_scope is None:
            return documents
        scope = str(account_scope)
        return [d for d in documents if d.get("bankAccountId") in (None, scope)]

    # ------------------------------------------------------------------
    # Live collections
    # ------------------------------------------------------------------

    def subscribe_collection(
        self,
        owner_path: str,
        account_id: UUID,
        kind: EntityKind,
        on_snapshot: SnapshotHandler,
        on_error: Optional[SubscriptionErrorHandler] = None,
    ) -> Unsubscribe:
        if not kind.is_account_scoped:
            raise SubscriptionError(f"{kind.value} cannot be watched per account", kind)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SubscriptionError("Subscriptions need a running event loop", kind) from e

        path = f"{owner_path}/{EntityKind.BANK_ACCOUNTS.value}/{account_id}/{kind.value}"
        subscription = _Subscription(path, kind, on_snapshot, on_error)
        subscription.task = loop.create_task(self._deliver(subscription))
        self._subscriptions.append(subscription)

        # Initial contents, like a real-time store's first snapshot
        subscription.queue.put_nowait(self._snapshot(path))

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)
            subscription.queue.put_nowait(_STOP)

        return unsubscribe

    async def _deliver(self, subscription: _Subscription) -> None:
        while True:
            item = await subscription.queue.get()
            try:
                if item is _STOP:
                    return
                if subscription.active:
                    await subscription.handler(item)
            except Exception:
                self._logger.exception(
                    "snapshot_handler_failed",
                    path=subscription.path,
                )
            finally:
                subscription.queue.task_done()

    def _notify(self, path: str) -> None:
        for subscription in self._subscriptions:
            if subscription.active and subscription.path == path:
                subscription.queue.put_nowait(self._snapshot(path))

    async def flush(self) -> None:
        """
        Wait until every queued snapshot has been handled.

        Handlers may write and so queue further snapshots; those are
        waited for as well.
        """
        while True:
            active = list(self._subscriptions)
            await asyncio.gather(*(s.queue.join() for s in active))
            if all(s.queue.empty() for s in self._subscriptions):
                return

    def emit_subscription_error(self, kind: EntityKind, message: str) -> int:
        """
        Report a delivery failure to every live subscription of one kind.

        Returns the number of subscriptions notified.
        """
        notified = 0
        for subscription in list(self._subscriptions):
            if subscription.kind == kind and subscription.on_error is not None:
                subscription.on_error(SubscriptionError(message, kind))
                notified += 1
        return notified

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        """Stop every live subscription."""
        for subscription in list(self._subscriptions):
            subscription.active = False
            subscription.queue.put_nowait(_STOP)
        self._subscriptions.clear()


class InMemoryAuditStorage(AuditStorageInterface):
    """Audit log kept in a list; append-only."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
