"""
Abstract Storage Interface

DESIGN DECISION: The core never talks to a storage technology directly.
It needs a key-value store of JSON-serializable records, scoped by key,
whose writes are durable before set() returns. This allows us to:
1. Use in-memory storage for testing
2. Use local JSON files on a single device
3. Put a sync layer behind the same contract later

The interface is intentionally tiny - we're not building a database.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from budgee.models.audit import AuditEvent


class KeyValueStoreInterface(ABC):
    """
    Abstract interface for the persistence substrate.

    Values are plain JSON-serializable structures (dict / list / str /
    number / bool / None).
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Returns:
            The stored value, or None if the key is absent

        Raises:
            CorruptDataError: If the stored bytes cannot be decoded
            StorageUnavailableError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """
        Write a value. Durable before returning.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if something was removed, False if the key was absent
        """
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with prefix, sorted."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_for_user(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent events for a user (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class CorruptDataError(StorageError):
    """Stored data exists but does not decode to the expected shape."""
    pass


class StorageUnavailableError(StorageError):
    """Could not reach / open the storage backend."""
    pass
