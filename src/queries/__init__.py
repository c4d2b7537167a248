"""Balance derivation and transaction filtering package."""

from src.queries.balances import (
    aggregate_transactions,
    allocated_percentage,
    derive_group_balances,
    derive_summary,
    max_amount,
)
from src.queries.filters import filter_transactions

__all__ = [
    "aggregate_transactions",
    "allocated_percentage",
    "derive_group_balances",
    "derive_summary",
    "filter_transactions",
    "max_amount",
]
