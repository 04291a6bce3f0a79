"""
Key-Value Audit Storage

Persists audit events into the same substrate as the ledger, one
append-only list per user. Events with no user go to a shared system log.
"""

from budgee.models.audit import AuditEvent
from budgee.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    KeyValueStoreInterface,
)

AUDIT_KEY_PREFIX = "budgee_audit"
SYSTEM_AUDIT_USER = "_system"


class KeyValueAuditStorage(AuditStorageInterface):
    """Audit log on top of a KeyValueStoreInterface."""

    def __init__(self, store: KeyValueStoreInterface, max_events_per_user: int = 5000):
        self._store = store
        self._max_events = max_events_per_user

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{AUDIT_KEY_PREFIX}_{user_id}"

    def _load(self, user_id: str) -> list[dict]:
        raw = self._store.get(self._key(user_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CorruptDataError(f"Audit log for {user_id!r} is not a list")
        return raw

    def append_event(self, event: AuditEvent) -> bool:
        user_id = event.user_id or SYSTEM_AUDIT_USER
        records = self._load(user_id)
        records.append(event.to_record())
        # Oldest events fall off once the per-user cap is reached
        if len(records) > self._max_events:
            records = records[-self._max_events:]
        self._store.set(self._key(user_id), records)
        return True

    def get_events_for_user(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        records = self._load(user_id)
        events = [AuditEvent.model_validate(record) for record in records]
        events.reverse()
        return events[:limit]
