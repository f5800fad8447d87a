"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets works as a shared, multi-user ledger store:
1. Several people (or devices) can write to the same spreadsheet
2. Non-technical users can inspect their data directly
3. No database setup required

Layout: one worksheet per entity kind. Each row holds one document as JSON,
next to the columns needed to find it (id, owner, collection path).

TRADEOFFS:
- Sheets has no push notifications, so live collections are polled and a
  snapshot is emitted whenever the watched rows change
- No transactions (we handle this with careful ordering)
- Limited query capabilities (we filter in Python)
"""

import asyncio
import json
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledgersync.config import GoogleSheetsSettings, get_settings
from ledgersync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledgersync.models.ledger import EntityKind, LedgerEntity, utc_now
from ledgersync.services.storage.codec import encode_entity
from ledgersync.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Document,
    LedgerStoreInterface,
    SnapshotHandler,
    StorageError,
    SubscriptionError,
    SubscriptionErrorHandler,
    Unsubscribe,
    collection_path,
    owner_path,
)


LEDGER_COLUMNS = [
    "id",
    "owner_id",
    "collection_path",
    "updated_at",
    "document_json",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @_write_retry
    def connect(self) -> gspread.Client:
        """Establish connection using service account credentials."""
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=[
                        "https://www.googleapis.com/auth/spreadsheets",
                        "https://www.googleapis.com/auth/drive",
                    ],
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if title not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=len(columns))
                sheet.append_row(columns)
            self._worksheets[title] = sheet
        return self._worksheets[title]


def document_to_row(path: str, document: Document) -> list:
    """Lay a document out as a ledger row."""
    return [
        document["id"],
        document["ownerId"],
        path,
        utc_now().isoformat(),
        json.dumps(document, sort_keys=True),
    ]


def row_to_document(row: list) -> Optional[Document]:
    """Document held by a ledger row, or None for blank/short rows."""
    if len(row) < len(LEDGER_COLUMNS) or not row[0] or not row[4]:
        return None
    return json.loads(row[4])


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """Google Sheets implementation of the ledger store."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._logger = structlog.get_logger(__name__)

    def _sheet(self, kind: EntityKind) -> gspread.Worksheet:
        return self._client.get_worksheet(kind.value, LEDGER_COLUMNS)

    def _read_rows(self, kind: EntityKind) -> list[list]:
        # Skip header
        return self._sheet(kind).get_all_values()[1:]

    @_write_retry
    async def create_or_replace(self, kind: EntityKind, entity: LedgerEntity) -> None:
        account_id = getattr(entity, "bank_account_id", None) if kind.is_account_scoped else None
        path = collection_path(entity.owner_id, kind, account_id)
        row = document_to_row(path, encode_entity(entity))
        try:
            sheet = self._sheet(kind)
            for idx, existing in enumerate(sheet.get_all_values()[1:], start=2):
                if existing and existing[0] == row[0]:
                    sheet.update(
                        range_name=f"A{idx}:E{idx}",
                        values=[row],
                        value_input_option="RAW",
                    )
                    return
            sheet.append_row(row, value_input_option="RAW")
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {kind.value} {entity.id}: {e}")

    @_write_retry
    async def delete(self, kind: EntityKind, entity_id: UUID, owner_id: str) -> None:
        try:
            sheet = self._sheet(kind)
            rows = sheet.get_all_values()
            # Bottom-up so earlier row numbers stay valid
            for idx in range(len(rows) - 1, 0, -1):
                row = rows[idx]
                if row and row[0] == str(entity_id) and len(row) > 1 and row[1] == owner_id:
                    sheet.delete_rows(idx + 1)
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {kind.value} {entity_id}: {e}")

    async def list_for_owner(
        self,
        kind: EntityKind,
        owner_id: str,
        account_scope: Optional[UUID] = None,
    ) -> list[Document]:
        try:
            rows = self._read_rows(kind)
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {kind.value}: {e}")

        if kind.is_account_scoped and account_scope is not None:
            wanted = collection_path(owner_id, kind, account_scope)
            return self._documents_at(rows, lambda path: path == wanted)

        documents = self._documents_at(
            rows, lambda path: path.startswith(owner_path(owner_id) + "/")
        )
        if kind.is_account_scoped or account_scope is None:
            return documents
        scope = str(account_scope)
        return [d for d in documents if d.get("bankAccountId") in (None, scope)]

    def _documents_at(self, rows: list[list], path_matches) -> list[Document]:
        documents = []
        for row in rows:
            if len(row) < len(LEDGER_COLUMNS) or not path_matches(row[2]):
                continue
            try:
                document = row_to_document(row)
            except json.JSONDecodeError:
                # Still returned as a document so decoding rejects it loudly
                document = {"id": row[0], "ownerId": row[1], "__corrupt__": row[4]}
            if document is not None:
                documents.append(document)
        return documents

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
        state = {"active": True}
        task = loop.create_task(self._poll(path, kind, on_snapshot, on_error, state))

        def unsubscribe() -> None:
            state["active"] = False
            if not task.done():
                # Safe: the poller only yields while sleeping or reading the sheet
                task.cancel()

        return unsubscribe

    async def _poll(
        self,
        path: str,
        kind: EntityKind,
        on_snapshot: SnapshotHandler,
        on_error: Optional[SubscriptionErrorHandler],
        state: dict,
    ) -> None:
        last_fingerprint: Optional[str] = None
        interval = self._client.settings.poll_interval_seconds
        while state["active"]:
            try:
                documents = self._documents_at(self._read_rows(kind), lambda p: p == path)
            except Exception as e:
                self._logger.warning("snapshot_poll_failed", path=path, error=str(e))
                if on_error is not None:
                    on_error(SubscriptionError(f"Polling {path} failed: {e}", kind))
            else:
                fingerprint = json.dumps(
                    sorted(documents, key=lambda d: str(d.get("id"))),
                    sort_keys=True,
                )
                if fingerprint != last_fingerprint and state["active"]:
                    last_fingerprint = fingerprint
                    # Shielded so unsubscribing never interrupts a handler midway
                    await asyncio.shield(on_snapshot(documents))
            await asyncio.sleep(interval)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._logger = structlog.get_logger(__name__)

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name, AUDIT_COLUMNS
        )

    def _load_events(self) -> list[AuditEvent]:
        events = []
        for record in self._sheet().get_all_records():
            try:
                events.append(
                    AuditEvent(
                        event_id=UUID(str(record["event_id"])),
                        timestamp=record["timestamp"],
                        event_type=AuditEventType(record["event_type"]),
                        severity=AuditSeverity(record["severity"]),
                        owner_id=record["owner_id"] or None,
                        entity_type=record["entity_type"] or None,
                        entity_id=UUID(record["entity_id"]) if record["entity_id"] else None,
                        correlation_id=(
                            UUID(record["correlation_id"]) if record["correlation_id"] else None
                        ),
                        description=record["description"],
                        details=json.loads(record["details_json"]) if record["details_json"] else {},
                        error_message=record["error_message"] or None,
                        is_user_action=str(record["is_user_action"]).lower() == "true",
                    )
                )
            except (KeyError, ValueError) as e:
                self._logger.warning("audit_row_skipped", error=str(e))
        return events

    @_write_retry
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
