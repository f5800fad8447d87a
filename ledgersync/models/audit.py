"""
Audit Models for Ledger Sync

Every mutation of the ledger, and every time the remote channel changes
what the ledger believes, is recorded as an audit event.
This provides:
1. Traceability of how a balance came to be what it is
2. Debugging information when the two update channels disagree
3. A history the user can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledgersync.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts and selection
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_SELECTED = "account_selected"

    # Entity mutations (incomes, expenses, budgets, goals, reminders)
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"

    # Derived aggregates
    TOTALS_RECOMPUTED = "totals_recomputed"

    # Remote channel
    SNAPSHOT_APPLIED = "snapshot_applied"
    SNAPSHOT_REJECTED = "snapshot_rejected"
    STALE_SNAPSHOT_IGNORED = "stale_snapshot_ignored"
    SUBSCRIPTION_FAILED = "subscription_failed"

    # Savings goals
    DUPLICATE_GOAL_REJECTED = "duplicate_goal_rejected"
    DUPLICATE_GOAL_REMOVED = "duplicate_goal_removed"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    STORAGE_FAILED = "storage_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection of the entity (e.g., 'incomes', 'bankAccounts')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - all events caused by one operation share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Columns follow AUDIT_COLUMNS in the Sheets storage module.
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_created("incomes", income.id, owner_id, ...)
        event = AuditEventBuilder.snapshot_applied(owner_id, account_id, "expenses", 4, [])
    """

    @staticmethod
    def account_created(
        owner_id: str,
        account_id: UUID,
        name: str,
        starting_balance: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Bank account created: {name}",
            details={"starting_balance": starting_balance},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        owner_id: str,
        account_id: UUID,
        removed_transactions: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Bank account deleted",
            details={"removed_transactions": removed_transactions},
            is_user_action=True,
        )

    @staticmethod
    def account_selected(
        owner_id: str,
        account_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_SELECTED,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            description=(
                "Account selected" if account_id else "No account selected"
            ),
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.ENTITY_CREATED: "created",
            AuditEventType.ENTITY_UPDATED: "updated",
            AuditEventType.ENTITY_DELETED: "deleted",
            AuditEventType.ACCOUNT_UPDATED: "updated",
        }.get(event_type, event_type.value)
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type} {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def totals_recomputed(
        owner_id: str,
        account_id: UUID,
        total_income: float,
        total_expense: float,
        current_balance: float,
        goals_refreshed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOTALS_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Totals recomputed, balance {current_balance:.2f}",
            details={
                "total_income": total_income,
                "total_expense": total_expense,
                "current_balance": current_balance,
                "goals_refreshed": goals_refreshed,
            },
        )

    @staticmethod
    def snapshot_applied(
        owner_id: str,
        account_id: UUID,
        collection: str,
        item_count: int,
        dropped_pending: list[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_APPLIED,
            severity=(
                AuditSeverity.WARNING if dropped_pending else AuditSeverity.DEBUG
            ),
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            description=f"Remote {collection} snapshot applied ({item_count} items)",
            details={
                "collection": collection,
                "item_count": item_count,
                "dropped_pending": [str(i) for i in dropped_pending],
            },
        )

    @staticmethod
    def snapshot_rejected(
        owner_id: str,
        account_id: UUID,
        collection: str,
        issues: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_REJECTED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            description=f"Remote {collection} snapshot rejected: malformed documents",
            details={"collection": collection, "issues": issues},
        )

    @staticmethod
    def stale_snapshot_ignored(
        owner_id: str,
        account_id: UUID,
        collection: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_SNAPSHOT_IGNORED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            description=f"Ignored {collection} snapshot for an account that is no longer selected",
            details={"collection": collection},
        )

    @staticmethod
    def subscription_failed(
        owner_id: str,
        account_id: Optional[UUID],
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="bankAccounts",
            entity_id=account_id,
            description=f"Live {collection} subscription failed",
            error_message=error_message,
            details={"collection": collection},
        )

    @staticmethod
    def duplicate_goal_rejected(
        owner_id: str,
        title: str,
        existing_goal_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_GOAL_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="savingsGoals",
            entity_id=existing_goal_id,
            description=f"A goal with this title already exists: {title}",
            details={"title": title},
            is_user_action=True,
        )

    @staticmethod
    def duplicate_goal_removed(
        owner_id: str,
        goal_id: UUID,
        title: str,
        kept_goal_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_GOAL_REMOVED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="savingsGoals",
            entity_id=goal_id,
            description=f"Removing duplicate goal: {title}",
            details={"kept_goal_id": str(kept_goal_id)},
        )

    @staticmethod
    def validation_failed(
        owner_id: str,
        entity_type: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"{entity_type} input rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def storage_failed(
        owner_id: str,
        entity_type: str,
        entity_id: Optional[UUID],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Persisting {entity_type} failed; local change reverted",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
