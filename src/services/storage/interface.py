"""
Abstract Storage Interface

Storage is defined as an abstract interface so that:
1. The SQL store can be swapped for another backend
2. Business logic stays decoupled from the storage implementation

Every budget repository is BOUND to one user. Callers obtain it with
`store.for_user(user_id)` and every method filters by that user, so there
is no way to issue an unscoped query through this interface.

Mutations that target an id the user does not own affect zero rows and
report it as a zero count. Ownership is never distinguished from
"does not exist".
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from src.models.audit import AuditEvent
from src.models.budget import (
    Group,
    GroupBalance,
    GroupInput,
    Transaction,
    TransactionInput,
    UserProfile,
    UserSummary,
)


class BudgetStorageInterface(ABC):
    """
    Groups, transactions, profile and derived balances of ONE user.
    """

    @property
    @abstractmethod
    def user_id(self) -> UUID:
        """The user every operation is scoped to."""
        pass

    # -- groups ---------------------------------------------------------------

    @abstractmethod
    async def list_groups(self) -> list[Group]:
        """All groups of the user, name ascending."""
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """The group if the user owns it, None otherwise."""
        pass

    @abstractmethod
    async def create_group(self, data: GroupInput) -> Group:
        """
        Insert a group stamped with the user id.

        Raises:
            PersistenceError: If the store rejects the insert
        """
        pass

    @abstractmethod
    async def update_group(self, group_id: UUID, data: GroupInput) -> int:
        """
        Apply `data` and stamp updated_at.

        Returns:
            Number of rows affected (0 when the user does not own it)
        """
        pass

    @abstractmethod
    async def delete_group(self, group_id: UUID) -> int:
        """
        Delete a group. Its transactions go with it (store cascade).

        Returns:
            Number of groups deleted (0 when the user does not own it)
        """
        pass

    # -- transactions -----------------------------------------------------------

    @abstractmethod
    async def list_transactions(self, limit: Optional[int] = None) -> list[Transaction]:
        """Transactions of the user, newest first."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """The transaction if the user owns it, None otherwise."""
        pass

    @abstractmethod
    async def create_transaction(self, data: TransactionInput) -> Transaction:
        """
        Insert a transaction stamped with the user id.

        Raises:
            OwnershipError: If `data.group_id` is not a group of the user
            PersistenceError: If the store rejects the insert
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        transaction_id: UUID,
        data: TransactionInput,
    ) -> int:
        """
        Apply `data` and stamp updated_at.

        Returns:
            Number of rows affected (0 when the user does not own it)

        Raises:
            OwnershipError: If `data.group_id` is not a group of the user
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> int:
        """
        Returns:
            Number of rows deleted (0 when the user does not own it)
        """
        pass

    # -- profile ----------------------------------------------------------------

    @abstractmethod
    async def get_profile(self) -> Optional[UserProfile]:
        """The user's profile, None before it is initialized."""
        pass

    @abstractmethod
    async def save_profile(
        self,
        full_name: Optional[str] = None,
        general_limit: Optional[float] = None,
    ) -> UserProfile:
        """
        Create or update the profile. None leaves a field unchanged.
        """
        pass

    # -- derived ----------------------------------------------------------------

    @abstractmethod
    async def get_user_balances(self) -> list[GroupBalance]:
        """
        One derived balance per group, name ascending.

        Recomputed from current rows on every call.
        """
        pass

    @abstractmethod
    async def get_user_summary(self) -> UserSummary:
        """User-wide general_max and total_available."""
        pass


class BudgetStoreInterface(ABC):
    """Hands out user-scoped repositories."""

    @abstractmethod
    def for_user(self, user_id: UUID) -> BudgetStorageInterface:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first, optionally for one user."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class PersistenceError(StorageError):
    """The backing store rejected the operation."""
    pass


class ConnectionError(PersistenceError):
    """Could not connect to storage backend."""
    pass


class OwnershipError(StorageError):
    """Target does not exist or belongs to another user."""
    pass
