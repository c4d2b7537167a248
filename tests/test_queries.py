"""Tests for transaction filtering."""

from uuid import uuid4

import pytest

from src.models.budget import Group, Transaction, TransactionType
from src.queries import filter_transactions


OWNER = uuid4()


@pytest.fixture
def groups():
    return [
        Group(name="Needs", percentage=50, can_spend=True, user_id=OWNER),
        Group(name="Fun", percentage=10, can_spend=True, user_id=OWNER),
    ]


@pytest.fixture
def transactions(groups):
    needs, fun = groups

    def txn(concept, kind, group=None):
        return Transaction(
            amount=10,
            concept=concept,
            type=kind,
            group_id=group.id if group else None,
            user_id=OWNER,
        )

    return [
        txn("Rent April", "expense", needs),
        txn("Cinema", "expense", fun),
        txn("Salary", "income"),
        txn("Refund groceries", "income", needs),
    ]


def concepts(rows):
    return [t.concept for t in rows]


class TestFilterTransactions:
    """Tests for search, group and type filters."""

    def test_no_filters_keeps_everything(self, transactions, groups):
        """Test empty filters match every row in order."""
        assert filter_transactions(transactions, groups) == transactions
        assert filter_transactions(transactions, groups, search="   ") == transactions

    def test_search_matches_concept_case_insensitively(self, transactions, groups):
        """Test the search finds text inside the concept."""
        assert concepts(filter_transactions(transactions, groups, search="RENT")) == ["Rent April"]

    def test_search_matches_group_name(self, transactions, groups):
        """Test the search also finds the group's name."""
        assert concepts(filter_transactions(transactions, groups, search="fun")) == ["Cinema"]

    def test_group_filter(self, transactions, groups):
        """Test only rows filed under the group are kept."""
        needs = groups[0]
        rows = filter_transactions(transactions, groups, group_id=needs.id)
        assert concepts(rows) == ["Rent April", "Refund groceries"]

    @pytest.mark.parametrize("kind", ["income", TransactionType.INCOME])
    def test_type_filter(self, transactions, groups, kind):
        """Test only rows of the type are kept."""
        rows = filter_transactions(transactions, groups, transaction_type=kind)
        assert concepts(rows) == ["Salary", "Refund groceries"]

    def test_filters_combine(self, transactions, groups):
        """Test every filter must match."""
        needs = groups[0]
        rows = filter_transactions(
            transactions, groups, search="needs", group_id=needs.id, transaction_type="expense"
        )
        assert concepts(rows) == ["Rent April"]

    def test_ungrouped_rows_not_matched_by_group_names(self, transactions, groups):
        """Test a row without a group only matches on its concept."""
        rows = filter_transactions(transactions, groups, search="needs")
        assert concepts(rows) == ["Rent April", "Refund groceries"]
