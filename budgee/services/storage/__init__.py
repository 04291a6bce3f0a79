"""
Storage Services Package

Provides the abstract key-value contract and its concrete implementations.
Local JSON files are the default backend; in-memory storage is for tests.
"""

from budgee.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    KeyValueStoreInterface,
    StorageError,
    StorageUnavailableError,
)
from budgee.services.storage.audit import KeyValueAuditStorage
from budgee.services.storage.json_file import JsonFileKeyValueStore
from budgee.services.storage.memory import InMemoryKeyValueStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    # Exceptions
    "CorruptDataError",
    "StorageError",
    "StorageUnavailableError",
    # Implementations
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueAuditStorage",
]
