"""
Services package.

Only the storage substrate is re-exported here. The ledger, security and
limits subpackages depend on budgee.audit, which itself depends on
storage, so they are imported from their own subpackages.
"""

from budgee.services.storage import (
    AuditStorageInterface,
    CorruptDataError,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStoreInterface,
    StorageError,
    StorageUnavailableError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "CorruptDataError",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
    "KeyValueStoreInterface",
    "StorageError",
    "StorageUnavailableError",
]
