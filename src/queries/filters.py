"""
Transaction Filters

Narrow an already listed set of transactions for display. A filter left
as None (or an empty search) matches everything. Order is preserved.
"""

from typing import Iterable, Optional, Union
from uuid import UUID

from src.models.budget import Group, Transaction, TransactionType


def filter_transactions(
    transactions: Iterable[Transaction],
    groups: Iterable[Group],
    search: Optional[str] = None,
    group_id: Optional[UUID] = None,
    transaction_type: Optional[Union[TransactionType, str]] = None,
) -> list[Transaction]:
    """
    Keep transactions matching every given filter.

    Args:
        transactions: Rows to filter, usually newest first
        groups: The user's groups, used to match the search on group names
        search: Case-insensitive text found in the concept or the group name
        group_id: Only transactions filed under this group
        transaction_type: Only income or only expense
    """
    names = {group.id: group.name.lower() for group in groups}
    term = (search or "").strip().lower()
    wanted_type = TransactionType(transaction_type) if transaction_type else None

    matches = []
    for txn in transactions:
        if group_id is not None and txn.group_id != group_id:
            continue
        if wanted_type is not None and txn.type != wanted_type:
            continue
        if term and term not in txn.concept.lower() and term not in names.get(txn.group_id, ""):
            continue
        matches.append(txn)
    return matches
