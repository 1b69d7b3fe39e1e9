"""Services package."""

from cashflow_engine.services.storage import (
    AuditStorageInterface,
    FinanceStorageInterface,
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
    NotFoundError,
    RetryingFinanceStorage,
    StorageError,
    TransientStorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "FinanceStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryFinanceStorage",
    "NotFoundError",
    "RetryingFinanceStorage",
    "StorageError",
    "TransientStorageError",
]
