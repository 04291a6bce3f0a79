"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every PIN action is logged.
This provides:
1. A record from which balances can be replayed and checked
2. Debugging capability when derived totals look wrong
3. A security trail for PIN verification and lockouts

The audit logger:
- Is synchronous, like the rest of the core
- Gracefully handles failures (never crashes the caller if logging fails)
- Never receives raw PINs or PIN digests
"""

import logging
from datetime import datetime
from typing import Optional

import structlog

from budgee.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budgee.services.storage import AuditStorageInterface, StorageError


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for JSON output through the stdlib logging tree."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
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


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
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
        self._logger = structlog.get_logger("budgee.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except StorageError as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_account_created(
        self,
        user_id: str,
        account_id: str,
        name: str,
        account_type: str,
        balance: str,
    ) -> None:
        self.log(AuditEventBuilder.account_created(
            user_id=user_id,
            account_id=account_id,
            name=name,
            account_type=account_type,
            balance=balance,
        ))

    def log_account_updated(
        self,
        user_id: str,
        account_id: str,
        changed_fields: list[str],
    ) -> None:
        self.log(AuditEventBuilder.account_updated(
            user_id=user_id,
            account_id=account_id,
            changed_fields=changed_fields,
        ))

    def log_account_deactivated(self, user_id: str, account_id: str) -> None:
        self.log(AuditEventBuilder.account_deactivated(user_id, account_id))

    def log_transaction_added(
        self,
        user_id: str,
        transaction_id: str,
        account_id: str,
        amount: str,
        category: str,
    ) -> None:
        self.log(AuditEventBuilder.transaction_added(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            amount=amount,
            category=category,
        ))

    def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: str,
        old_amount: str,
        new_amount: str,
    ) -> None:
        self.log(AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            old_amount=old_amount,
            new_amount=new_amount,
        ))

    def log_transaction_removed(
        self,
        user_id: str,
        transaction_id: str,
        amount: str,
    ) -> None:
        self.log(AuditEventBuilder.transaction_removed(
            user_id=user_id,
            transaction_id=transaction_id,
            amount=amount,
        ))

    def log_balance_adjusted(
        self,
        user_id: str,
        account_id: str,
        delta: str,
        new_balance: str,
    ) -> None:
        self.log(AuditEventBuilder.balance_adjusted(
            user_id=user_id,
            account_id=account_id,
            delta=delta,
            new_balance=new_balance,
        ))

    def log_balance_rebuilt(
        self,
        user_id: str,
        account_id: str,
        stored: str,
        expected: str,
    ) -> None:
        self.log(AuditEventBuilder.balance_rebuilt(
            user_id=user_id,
            account_id=account_id,
            stored=stored,
            expected=expected,
        ))

    def log_savings_allocated(
        self,
        user_id: str,
        allocation_id: str,
        allocation_type: str,
        amount: str,
        account_id: str,
    ) -> None:
        self.log(AuditEventBuilder.savings_allocated(
            user_id=user_id,
            allocation_id=allocation_id,
            allocation_type=allocation_type,
            amount=amount,
            account_id=account_id,
        ))

    def log_pin_event(
        self,
        event_type: AuditEventType,
        user_id: str,
        description: str,
        details: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> None:
        """Log a PIN / app-lock event (setup, change, verify, remove, lock, unlock)."""
        self.log(AuditEventBuilder.pin_event(
            event_type=event_type,
            user_id=user_id,
            description=description,
            details=details,
            severity=severity,
        ))

    def log_pin_locked_out(self, user_id: str, locked_until: datetime) -> None:
        self.log(AuditEventBuilder.pin_locked_out(user_id, locked_until))

    def log_spending_alert(
        self,
        user_id: str,
        kind: str,
        limit_types: list[str],
    ) -> None:
        self.log(AuditEventBuilder.spending_alert_raised(
            user_id=user_id,
            kind=kind,
            limit_types=limit_types,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            user_id=user_id,
        ))
