"""
Audit Models for Budgee Core

Every ledger mutation and every security-relevant PIN action is logged.
This provides:
1. A replayable record of balance changes
2. A trail of PIN setup / verification / lockout
3. Debugging information when derived views look wrong

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
CRITICAL: Audit events never contain the raw PIN or its digest.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budgee.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_REMOVED = "transaction_removed"

    # Reconciliation
    BALANCE_ADJUSTED = "balance_adjusted"
    BALANCE_REBUILT = "balance_rebuilt"

    # Savings
    SAVINGS_ALLOCATED = "savings_allocated"

    # PIN security
    PIN_SETUP = "pin_setup"
    PIN_CHANGED = "pin_changed"
    PIN_VERIFIED = "pin_verified"
    PIN_VERIFICATION_FAILED = "pin_verification_failed"
    PIN_LOCKED_OUT = "pin_locked_out"
    PIN_REMOVED = "pin_removed"
    APP_LOCKED = "app_locked"
    APP_UNLOCKED = "app_unlocked"

    # Spending limits
    SPENDING_ALERT_RAISED = "spending_alert_raised"

    # System events
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

    # Whose data is this about?
    user_id: Optional[str] = None

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'pin')"
    )
    entity_id: Optional[str] = None

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
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict:
        """JSON-safe dict for the key-value audit storage."""
        record = self.model_dump(mode="json")
        # Round-trip details through json to fail fast on non-serializable values
        record["details"] = json.loads(json.dumps(self.details, default=str))
        return record


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(user_id, txn_id, account_id, amount)
        event = AuditEventBuilder.pin_locked_out(user_id, locked_until)
    """

    @staticmethod
    def account_created(
        user_id: str,
        account_id: str,
        name: str,
        account_type: str,
        balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name} ({account_type})",
            details={
                "name": name,
                "account_type": account_type,
                "opening_balance": balance,
            },
            is_user_action=True,
        )

    @staticmethod
    def account_updated(
        user_id: str,
        account_id: str,
        changed_fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def account_deactivated(user_id: str, account_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description="Account deactivated",
            is_user_action=True,
        )

    @staticmethod
    def transaction_added(
        user_id: str,
        transaction_id: str,
        account_id: str,
        amount: str,
        category: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction added: {amount} ({category})",
            details={
                "account_id": account_id,
                "amount": amount,
                "category": category,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: str,
        old_amount: str,
        new_amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated: {old_amount} -> {new_amount}",
            details={"old_amount": old_amount, "new_amount": new_amount},
            is_user_action=True,
        )

    @staticmethod
    def transaction_removed(
        user_id: str,
        transaction_id: str,
        amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REMOVED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction removed: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def balance_adjusted(
        user_id: str,
        account_id: str,
        delta: str,
        new_balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Balance adjusted by {delta}",
            details={"delta": delta, "new_balance": new_balance},
        )

    @staticmethod
    def balance_rebuilt(
        user_id: str,
        account_id: str,
        stored: str,
        expected: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REBUILT,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Balance drift repaired: {stored} -> {expected}",
            details={"stored": stored, "expected": expected},
        )

    @staticmethod
    def savings_allocated(
        user_id: str,
        allocation_id: str,
        allocation_type: str,
        amount: str,
        account_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_ALLOCATED,
            user_id=user_id,
            entity_type="savings_allocation",
            entity_id=allocation_id,
            description=f"Savings {allocation_type}: {amount}",
            details={
                "type": allocation_type,
                "amount": amount,
                "account_id": account_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def pin_event(
        event_type: AuditEventType,
        user_id: str,
        description: str,
        details: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            user_id=user_id,
            entity_type="pin",
            entity_id=user_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def pin_locked_out(user_id: str, locked_until: datetime) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_LOCKED_OUT,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="pin",
            entity_id=user_id,
            description="Too many failed PIN attempts; PIN locked",
            details={"locked_until": locked_until.isoformat()},
        )

    @staticmethod
    def spending_alert_raised(
        user_id: str,
        kind: str,
        limit_types: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPENDING_ALERT_RAISED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="spending_limit",
            description=f"Spending alert ({kind}): {', '.join(limit_types)}",
            details={"kind": kind, "limit_types": limit_types},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
