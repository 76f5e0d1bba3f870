"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Two backends ship today: in-memory and JSON file. Both are swappable.
"""

from personal_finance.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from personal_finance.services.storage.json_file import (
    JsonFileAuditStorage,
    JsonFileLedgerStorage,
)
from personal_finance.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # JSON file implementation
    "JsonFileAuditStorage",
    "JsonFileLedgerStorage",
]
