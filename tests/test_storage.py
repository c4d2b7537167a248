"""Tests for the user-scoped SQL storage."""

import asyncio
from uuid import uuid4

import pytest

from src.models.audit import AuditEventBuilder
from src.models.budget import GroupInput, TransactionInput
from src.queries import aggregate_transactions, derive_group_balances, derive_summary
from src.config import DatabaseSettings
from src.services.storage import Database, OwnershipError, PersistenceError
from src.services.storage.database import GroupRecord, TransactionRecord


def group_input(name="Needs", percentage=20.0, can_spend=True) -> GroupInput:
    return GroupInput(name=name, percentage=percentage, can_spend=can_spend)


def txn_input(amount=10.0, kind="expense", group_id=None, concept="Item") -> TransactionInput:
    return TransactionInput(amount=amount, type=kind, concept=concept, group_id=group_id)


class TestGroups:
    """Tests for group persistence."""

    def test_create_stamps_owner(self, store, user_a):
        """Test a created group belongs to the bound user."""
        storage = store.for_user(user_a.id)
        group = asyncio.run(storage.create_group(group_input()))

        assert group.user_id == user_a.id
        assert asyncio.run(storage.get_group(group.id)) == group

    def test_list_sorted_by_name(self, store, user_a):
        """Test groups are listed name ascending."""
        storage = store.for_user(user_a.id)
        for name in ("wants", "Needs", "Savings"):
            asyncio.run(storage.create_group(group_input(name=name, percentage=10)))

        names = [g.name for g in asyncio.run(storage.list_groups())]
        assert names == ["Needs", "Savings", "wants"]

    def test_update_stamps_updated_at(self, store, user_a):
        """Test an update applies the data and moves updated_at."""
        storage = store.for_user(user_a.id)
        group = asyncio.run(storage.create_group(group_input()))

        affected = asyncio.run(storage.update_group(group.id, group_input(name="Rent", percentage=35)))
        updated = asyncio.run(storage.get_group(group.id))

        assert affected == 1
        assert updated.name == "Rent"
        assert updated.percentage == 35
        assert updated.updated_at > group.updated_at
        assert updated.created_at == group.created_at

    def test_users_are_isolated(self, store, user_a, user_b):
        """Test one user never sees another user's groups."""
        asyncio.run(store.for_user(user_a.id).create_group(group_input()))
        assert asyncio.run(store.for_user(user_b.id).list_groups()) == []

    def test_update_foreign_group_affects_nothing(self, store, user_a, user_b):
        """Test updating another user's group changes zero rows."""
        group = asyncio.run(store.for_user(user_b.id).create_group(group_input()))

        affected = asyncio.run(
            store.for_user(user_a.id).update_group(group.id, group_input(name="Hijacked"))
        )

        assert affected == 0
        assert asyncio.run(store.for_user(user_b.id).get_group(group.id)).name == "Needs"

    def test_delete_foreign_group_affects_nothing(self, store, user_a, user_b):
        """Test deleting another user's group changes zero rows."""
        group = asyncio.run(store.for_user(user_b.id).create_group(group_input()))

        assert asyncio.run(store.for_user(user_a.id).delete_group(group.id)) == 0
        assert asyncio.run(store.for_user(user_b.id).get_group(group.id)) is not None

    def test_delete_missing_group(self, store, user_a):
        """Test deleting an unknown id changes zero rows."""
        assert asyncio.run(store.for_user(user_a.id).delete_group(uuid4())) == 0

    def test_delete_cascades_to_transactions(self, store, user_a):
        """Test deleting a group removes its transactions."""
        storage = store.for_user(user_a.id)
        doomed = asyncio.run(storage.create_group(group_input(name="Fun")))
        kept = asyncio.run(storage.create_group(group_input(name="Rent")))
        asyncio.run(storage.create_transaction(txn_input(group_id=doomed.id, concept="Cinema")))
        asyncio.run(storage.create_transaction(txn_input(group_id=doomed.id, concept="Concert")))
        asyncio.run(storage.create_transaction(txn_input(group_id=kept.id, concept="April")))
        asyncio.run(storage.create_transaction(txn_input(concept="Loose")))

        assert asyncio.run(storage.delete_group(doomed.id)) == 1

        concepts = {t.concept for t in asyncio.run(storage.list_transactions())}
        assert concepts == {"April", "Loose"}

    def test_store_rejects_invalid_percentage(self, database, user_a):
        """Test the schema refuses rows the validator would refuse."""
        with pytest.raises(PersistenceError):
            with database.session() as session:
                session.add(GroupRecord(user_id=user_a.id, name="Bad", percentage=0))


class TestTransactions:
    """Tests for transaction persistence."""

    def test_list_newest_first(self, store, user_a):
        """Test transactions are listed by creation time descending."""
        storage = store.for_user(user_a.id)
        for concept in ("first", "second", "third"):
            asyncio.run(storage.create_transaction(txn_input(concept=concept)))

        concepts = [t.concept for t in asyncio.run(storage.list_transactions())]
        assert concepts == ["third", "second", "first"]

    def test_list_limit(self, store, user_a):
        """Test the limit keeps only the most recent transactions."""
        storage = store.for_user(user_a.id)
        for i in range(7):
            asyncio.run(storage.create_transaction(txn_input(concept=f"t{i}")))

        recent = asyncio.run(storage.list_transactions(limit=5))
        assert [t.concept for t in recent] == ["t6", "t5", "t4", "t3", "t2"]

    def test_foreign_group_rejected_on_create(self, store, user_a, user_b):
        """Test a transaction cannot point at another user's group."""
        foreign = asyncio.run(store.for_user(user_b.id).create_group(group_input()))

        with pytest.raises(OwnershipError):
            asyncio.run(
                store.for_user(user_a.id).create_transaction(txn_input(group_id=foreign.id))
            )
        assert asyncio.run(store.for_user(user_a.id).list_transactions()) == []

    def test_foreign_group_rejected_on_update(self, store, user_a, user_b):
        """Test an update cannot move a transaction into another user's group."""
        storage = store.for_user(user_a.id)
        txn = asyncio.run(storage.create_transaction(txn_input()))
        foreign = asyncio.run(store.for_user(user_b.id).create_group(group_input()))

        with pytest.raises(OwnershipError):
            asyncio.run(storage.update_transaction(txn.id, txn_input(group_id=foreign.id)))

    def test_update_and_delete_foreign_transaction(self, store, user_a, user_b):
        """Test another user's transaction can be neither changed nor removed."""
        txn = asyncio.run(store.for_user(user_b.id).create_transaction(txn_input(amount=99)))
        intruder = store.for_user(user_a.id)

        assert asyncio.run(intruder.update_transaction(txn.id, txn_input(amount=1))) == 0
        assert asyncio.run(intruder.delete_transaction(txn.id)) == 0
        assert asyncio.run(intruder.get_transaction(txn.id)) is None

        owner_view = asyncio.run(store.for_user(user_b.id).get_transaction(txn.id))
        assert owner_view.amount == 99

    def test_update_own_transaction(self, store, user_a):
        """Test an owner can move a transaction between groups."""
        storage = store.for_user(user_a.id)
        group = asyncio.run(storage.create_group(group_input()))
        txn = asyncio.run(storage.create_transaction(txn_input()))

        affected = asyncio.run(
            storage.update_transaction(txn.id, txn_input(amount=12.5, kind="income", group_id=group.id))
        )
        updated = asyncio.run(storage.get_transaction(txn.id))

        assert affected == 1
        assert updated.group_id == group.id
        assert updated.amount == 12.5
        assert updated.updated_at > txn.updated_at

    def test_store_rejects_non_positive_amount(self, database, user_a):
        """Test the schema refuses zero amounts."""
        with pytest.raises(PersistenceError):
            with database.session() as session:
                session.add(TransactionRecord(user_id=user_a.id, amount=0, type="income", concept="x"))


class TestProfile:
    """Tests for the per-user profile."""

    def test_missing_profile(self, store, user_a):
        """Test there is no profile before one is saved."""
        assert asyncio.run(store.for_user(user_a.id).get_profile()) is None

    def test_save_then_partial_update(self, store, user_a):
        """Test None leaves a field unchanged."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(full_name="Ana", general_limit=1000))
        profile = asyncio.run(storage.save_profile(general_limit=1500))

        assert profile.full_name == "Ana"
        assert profile.general_limit == 1500


class TestDerivedBalances:
    """Tests for the SQL aggregation feeding the derivation."""

    def _seed(self, storage):
        needs = asyncio.run(storage.create_group(group_input(name="Needs", percentage=20)))
        wants = asyncio.run(storage.create_group(group_input(name="Wants", percentage=30)))
        asyncio.run(storage.create_transaction(txn_input(50, "expense", needs.id)))
        asyncio.run(storage.create_transaction(txn_input(10, "income", needs.id)))
        asyncio.run(storage.create_transaction(txn_input(25, "expense")))
        return needs, wants

    def test_balances(self, store, user_a):
        """Test ceilings and availability over stored rows."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=1000))
        needs, wants = self._seed(storage)

        balances = asyncio.run(storage.get_user_balances())

        assert [b.group_id for b in balances] == [needs.id, wants.id]
        assert balances[0].max_amount == 200
        assert balances[0].available_amount == 160
        assert balances[1].available_amount == 300
        assert balances[0].total_available == 160 + 300 - 25

    def test_summary(self, store, user_a):
        """Test user-wide figures over stored rows."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=1000))
        self._seed(storage)

        summary = asyncio.run(storage.get_user_summary())
        assert summary.general_max == 1000
        assert summary.total_available == 435

    def test_matches_pure_aggregation(self, store, user_a):
        """Test SQL sums agree with aggregation over the listed rows."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=2500))
        self._seed(storage)

        groups = asyncio.run(storage.list_groups())
        transactions = asyncio.run(storage.list_transactions())
        totals, ungrouped = aggregate_transactions(groups, transactions)

        assert asyncio.run(storage.get_user_balances()) == derive_group_balances(2500, totals, ungrouped)
        assert asyncio.run(storage.get_user_summary()) == derive_summary(2500, totals, ungrouped)

    def test_without_profile_limit_is_zero(self, store, user_a):
        """Test a user without a profile has a zero general limit."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.create_group(group_input()))

        balance = asyncio.run(storage.get_user_balances())[0]
        assert balance.max_amount == 0
        assert balance.general_max == 0

    def test_idempotent(self, store, user_a):
        """Test repeated reads without mutation are identical."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=1000))
        self._seed(storage)

        assert asyncio.run(storage.get_user_balances()) == asyncio.run(storage.get_user_balances())
        assert asyncio.run(storage.get_user_summary()) == asyncio.run(storage.get_user_summary())

    def test_other_users_rows_ignored(self, store, user_a, user_b):
        """Test another user's transactions never reach a balance."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=1000))
        asyncio.run(storage.create_group(group_input()))
        asyncio.run(store.for_user(user_b.id).create_transaction(txn_input(500, "expense")))

        summary = asyncio.run(storage.get_user_summary())
        assert summary.total_available == 200

    def test_reflects_latest_mutation(self, store, user_a):
        """Test a read right after a delete no longer counts the row."""
        storage = store.for_user(user_a.id)
        asyncio.run(storage.save_profile(general_limit=1000))
        group = asyncio.run(storage.create_group(group_input()))
        txn = asyncio.run(storage.create_transaction(txn_input(40, "expense", group.id)))

        assert asyncio.run(storage.get_user_balances())[0].available_amount == 160
        asyncio.run(storage.delete_transaction(txn.id))
        assert asyncio.run(storage.get_user_balances())[0].available_amount == 200


class TestAuditStorage:
    """Tests for the append-only audit table."""

    def test_append_and_query_by_entity(self, audit_storage):
        """Test events are stored and found by entity."""
        entity_id, user_id = uuid4(), uuid4()
        created = AuditEventBuilder.entity_created("group", entity_id, user_id, {"name": "Needs"})
        deleted = AuditEventBuilder.entity_deleted("group", entity_id, user_id)

        assert asyncio.run(audit_storage.append_event(created)) is True
        asyncio.run(audit_storage.append_event(deleted))

        events = asyncio.run(audit_storage.get_events_by_entity("group", entity_id))
        by_id = {e.event_id: e for e in events}
        assert set(by_id) == {created.event_id, deleted.event_id}
        assert by_id[created.event_id].details == {"name": "Needs"}
        assert by_id[deleted.event_id].event_type == deleted.event_type

    def test_recent_events_per_user(self, audit_storage):
        """Test recent events can be filtered by user."""
        mine, theirs = uuid4(), uuid4()
        asyncio.run(audit_storage.append_event(AuditEventBuilder.entity_deleted("group", uuid4(), mine)))
        asyncio.run(audit_storage.append_event(AuditEventBuilder.entity_deleted("group", uuid4(), theirs)))

        events = asyncio.run(audit_storage.get_recent_events(user_id=mine))
        assert [e.user_id for e in events] == [mine]


class TestDatabase:
    """Tests for the database client."""

    def test_file_database_creates_directory(self, tmp_path):
        """Test a file URL gets its parent directory created."""
        path = tmp_path / "nested" / "budget.db"
        db = Database(url=f"sqlite:///{path}", settings=DatabaseSettings())
        try:
            db.connect()
            assert path.parent.exists()
        finally:
            db.close()

    def test_session_rolls_back_on_error(self, database, user_a):
        """Test a failed unit of work leaves nothing behind."""
        with pytest.raises(RuntimeError):
            with database.session() as session:
                session.add(GroupRecord(user_id=user_a.id, name="Temp", percentage=10))
                session.flush()
                raise RuntimeError("boom")

        with database.session() as session:
            assert session.query(GroupRecord).count() == 0
