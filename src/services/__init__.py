"""Services package."""

from src.services.auth import (
    AuthError,
    AuthProviderInterface,
    LocalAuthProvider,
)
from src.services.exchange import (
    ExchangeRateService,
    RateCache,
    UpstreamError,
    format_currency_amount,
)
from src.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    BudgetStoreInterface,
    ConnectionError,
    Database,
    OwnershipError,
    PersistenceError,
    SqlAuditStorage,
    SqlBudgetStorage,
    SqlBudgetStore,
    StorageError,
)

__all__ = [
    # Auth services
    "AuthError",
    "AuthProviderInterface",
    "LocalAuthProvider",
    # Exchange services
    "ExchangeRateService",
    "RateCache",
    "UpstreamError",
    "format_currency_amount",
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "BudgetStoreInterface",
    "ConnectionError",
    "Database",
    "OwnershipError",
    "PersistenceError",
    "SqlAuditStorage",
    "SqlBudgetStorage",
    "SqlBudgetStore",
    "StorageError",
]
