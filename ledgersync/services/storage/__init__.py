"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the ledger
store and the audit log. The in-memory store backs tests and local runs;
Google Sheets is the shared backend. Both are swappable behind the
interfaces.
"""

from ledgersync.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Document,
    LedgerStoreInterface,
    NotFoundError,
    SnapshotHandler,
    StorageError,
    SubscriptionError,
    SubscriptionErrorHandler,
    Unsubscribe,
    collection_path,
    owner_path,
)
from ledgersync.services.storage.codec import (
    decode_document,
    decode_documents,
    encode_entity,
)
from ledgersync.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from ledgersync.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "Document",
    "SnapshotHandler",
    "SubscriptionErrorHandler",
    "Unsubscribe",
    "collection_path",
    "owner_path",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    "SubscriptionError",
    # Document codec
    "decode_document",
    "decode_documents",
    "encode_entity",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
