"""
Storage Services Package

Provides the abstract persistence contract the engine depends on, a
retrying wrapper, and an in-memory reference implementation.
"""

from cashflow_engine.services.storage.interface import (
    AuditStorageInterface,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
    TransientStorageError,
)
from cashflow_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
)
from cashflow_engine.services.storage.resilient import RetryingFinanceStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceStorageInterface",
    # Exceptions
    "NotFoundError",
    "StorageError",
    "TransientStorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryFinanceStorage",
    "RetryingFinanceStorage",
]
