"""
Balance Derivation

Balances are DERIVED, never stored. Every read recomputes them from the
current transaction rows, so they always agree with the latest committed
mutation.

Given the general limit L and, per group, its percentage and the net of
its transactions (income minus expense):

    max_amount(g)       = L * percentage(g) / 100
    available_amount(g) = max_amount(g) + net(g)
    general_max         = L
    total_available     = sum(available_amount(g)) + net(ungrouped)

Transactions without a group belong to no group balance; their net is
folded into the user-wide total only.

Everything here is pure: same input, same output, no hidden state.
"""

from typing import Iterable, Optional
from uuid import UUID

from src.models.budget import (
    Group,
    GroupBalance,
    GroupTotals,
    Transaction,
    TransactionType,
    UserSummary,
)


def _cents(value: float) -> float:
    # 0.0 rather than -0.0 after rounding
    return round(value, 2) + 0.0


def max_amount(general_limit: float, percentage: float) -> float:
    """Ceiling of a group: its percentage share of the general limit."""
    return _cents(general_limit * percentage / 100)


def aggregate_transactions(
    groups: Iterable[Group],
    transactions: Iterable[Transaction],
) -> tuple[list[GroupTotals], float]:
    """
    Sum income and expense per group over a materialized transaction list.

    Returns (totals ordered by group name, net of ungrouped transactions).
    Transactions pointing at a group missing from `groups` count as
    ungrouped.
    """
    totals: dict[UUID, GroupTotals] = {
        group.id: GroupTotals(
            group_id=group.id,
            group_name=group.name,
            percentage=group.percentage,
            can_spend=group.can_spend,
        )
        for group in groups
    }
    ungrouped_net = 0.0

    for txn in transactions:
        bucket = totals.get(txn.group_id) if txn.group_id else None
        if bucket is None:
            ungrouped_net += txn.signed_amount
        elif txn.type == TransactionType.INCOME:
            bucket.income_total += txn.amount
        else:
            bucket.expense_total += txn.amount

    ordered = sorted(totals.values(), key=lambda t: (t.group_name.lower(), str(t.group_id)))
    return ordered, _cents(ungrouped_net)


def derive_summary(
    general_limit: float,
    totals: Iterable[GroupTotals],
    ungrouped_net: float = 0.0,
) -> UserSummary:
    """User-wide ceiling and availability."""
    available = sum(
        max_amount(general_limit, t.percentage) + t.net for t in totals
    )
    return UserSummary(
        general_max=_cents(general_limit),
        total_available=_cents(available + ungrouped_net),
    )


def derive_group_balances(
    general_limit: float,
    totals: Iterable[GroupTotals],
    ungrouped_net: float = 0.0,
    summary: Optional[UserSummary] = None,
) -> list[GroupBalance]:
    """
    One balance row per group, in the order given.

    Each row repeats the user-wide figures, matching the shape of the
    store's `get_user_balances`.
    """
    totals = list(totals)
    summary = summary or derive_summary(general_limit, totals, ungrouped_net)

    balances = []
    for t in totals:
        ceiling = max_amount(general_limit, t.percentage)
        balances.append(GroupBalance(
            group_id=t.group_id,
            group_name=t.group_name,
            percentage=t.percentage,
            can_spend=t.can_spend,
            max_amount=ceiling,
            available_amount=_cents(ceiling + t.net),
            general_max=summary.general_max,
            total_available=summary.total_available,
        ))
    return balances


def allocated_percentage(groups: Iterable[Group]) -> float:
    """Sum of the percentages claimed by `groups`."""
    return round(sum(group.percentage for group in groups), 2)
