"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements a SQLAlchemy relational store, but designed to be swappable.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    BudgetStoreInterface,
    ConnectionError,
    OwnershipError,
    PersistenceError,
    StorageError,
)
from src.services.storage.database import Database
from src.services.storage.sql_storage import (
    SqlAuditStorage,
    SqlBudgetStorage,
    SqlBudgetStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "BudgetStoreInterface",
    # Exceptions
    "ConnectionError",
    "OwnershipError",
    "PersistenceError",
    "StorageError",
    # SQL implementation
    "Database",
    "SqlAuditStorage",
    "SqlBudgetStorage",
    "SqlBudgetStore",
]
