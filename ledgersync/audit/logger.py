"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of how each balance was derived
2. Debugging capability when local and remote updates disagree
3. User can see history of their changes

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgersync.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from ledgersync.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_created(
        self,
        owner_id: str,
        account_id: UUID,
        name: str,
        starting_balance: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.account_created(
                owner_id=owner_id,
                account_id=account_id,
                name=name,
                starting_balance=starting_balance,
                correlation_id=correlation_id,
            )
        )

    async def log_account_deleted(
        self,
        owner_id: str,
        account_id: UUID,
        removed_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.account_deleted(
                owner_id=owner_id,
                account_id=account_id,
                removed_transactions=removed_transactions,
                correlation_id=correlation_id,
            )
        )

    async def log_account_selected(self, owner_id: str, account_id: Optional[UUID]) -> None:
        await self.log(AuditEventBuilder.account_selected(owner_id, account_id))

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation, update or deletion of an entity."""
        await self.log(
            AuditEventBuilder.entity_changed(
                event_type=event_type,
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details,
                correlation_id=correlation_id,
            )
        )

    async def log_totals_recomputed(
        self,
        owner_id: str,
        account_id: UUID,
        total_income: float,
        total_expense: float,
        current_balance: float,
        goals_refreshed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.totals_recomputed(
                owner_id=owner_id,
                account_id=account_id,
                total_income=total_income,
                total_expense=total_expense,
                current_balance=current_balance,
                goals_refreshed=goals_refreshed,
                correlation_id=correlation_id,
            )
        )

    async def log_snapshot_applied(
        self,
        owner_id: str,
        account_id: UUID,
        collection: str,
        item_count: int,
        dropped_pending: list[UUID],
    ) -> None:
        await self.log(
            AuditEventBuilder.snapshot_applied(
                owner_id, account_id, collection, item_count, dropped_pending
            )
        )

    async def log_snapshot_rejected(
        self,
        owner_id: str,
        account_id: UUID,
        collection: str,
        issues: list[dict],
    ) -> None:
        await self.log(
            AuditEventBuilder.snapshot_rejected(owner_id, account_id, collection, issues)
        )

    async def log_stale_snapshot(
        self,
        owner_id: str,
        account_id: UUID,
        collection: str,
    ) -> None:
        await self.log(
            AuditEventBuilder.stale_snapshot_ignored(owner_id, account_id, collection)
        )

    async def log_subscription_failed(
        self,
        owner_id: str,
        account_id: Optional[UUID],
        collection: str,
        error_message: str,
    ) -> None:
        await self.log(
            AuditEventBuilder.subscription_failed(
                owner_id, account_id, collection, error_message
            )
        )

    async def log_duplicate_goal_rejected(
        self,
        owner_id: str,
        title: str,
        existing_goal_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.duplicate_goal_rejected(owner_id, title, existing_goal_id)
        )

    async def log_duplicate_goal_removed(
        self,
        owner_id: str,
        goal_id: UUID,
        title: str,
        kept_goal_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.duplicate_goal_removed(owner_id, goal_id, title, kept_goal_id)
        )

    async def log_validation_failed(
        self,
        owner_id: str,
        entity_type: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(
            AuditEventBuilder.validation_failed(
                owner_id=owner_id,
                entity_type=entity_type,
                issues=issues,
                correlation_id=correlation_id,
            )
        )

    async def log_storage_failed(
        self,
        owner_id: str,
        entity_type: str,
        entity_id: Optional[UUID],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.storage_failed(
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=entity_id,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                correlation_id=correlation_id,
            )
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
