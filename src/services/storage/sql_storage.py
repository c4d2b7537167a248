"""
SQL Storage Implementation

Implements the storage interfaces on top of the SQLAlchemy `Database`.

Every statement issued by `SqlBudgetStorage` carries the
`user_id = :bound_user` predicate, including updates and deletes, so a
mutation against another user's row simply affects zero rows.

Balance aggregation runs in SQL (one grouped scan of the user's
transactions), then the pure derivation in `src.queries.balances` turns
the per-group sums into ceilings and availability.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.orm import Session

from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.budget import (
    Group,
    GroupBalance,
    GroupInput,
    GroupTotals,
    Transaction,
    TransactionInput,
    TransactionType,
    UserProfile,
    UserSummary,
    utc_now,
)
from src.queries.balances import derive_group_balances, derive_summary
from src.services.storage.database import (
    AuditEventRecord,
    Database,
    GroupRecord,
    ProfileRecord,
    TransactionRecord,
)
from src.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    BudgetStoreInterface,
    OwnershipError,
)


Clock = Callable[[], datetime]


class SqlBudgetStore(BudgetStoreInterface):
    """Factory of user-scoped SQL repositories sharing one Database."""

    def __init__(self, database: Database, clock: Clock = utc_now):
        self._database = database
        self._clock = clock

    def for_user(self, user_id: UUID) -> "SqlBudgetStorage":
        return SqlBudgetStorage(self._database, user_id, clock=self._clock)


class SqlBudgetStorage(BudgetStorageInterface):
    """
    Budget repository for a single user.
    """

    def __init__(self, database: Database, user_id: UUID, clock: Clock = utc_now):
        self._database = database
        self._user_id = user_id
        self._clock = clock

    @property
    def user_id(self) -> UUID:
        return self._user_id

    # -- conversion -------------------------------------------------------------

    @staticmethod
    def _to_group(record: GroupRecord) -> Group:
        return Group.model_validate(record, from_attributes=True)

    @staticmethod
    def _to_transaction(record: TransactionRecord) -> Transaction:
        return Transaction.model_validate(record, from_attributes=True)

    @staticmethod
    def _to_profile(record: ProfileRecord) -> UserProfile:
        return UserProfile.model_validate(record, from_attributes=True)

    def _owns_group(self, session: Session, group_id: UUID) -> bool:
        found = session.execute(
            select(GroupRecord.id).where(
                GroupRecord.id == group_id,
                GroupRecord.user_id == self._user_id,
            )
        ).first()
        return found is not None

    # -- groups -----------------------------------------------------------------

    async def list_groups(self) -> list[Group]:
        with self._database.session() as session:
            records = session.scalars(
                select(GroupRecord)
                .where(GroupRecord.user_id == self._user_id)
                .order_by(func.lower(GroupRecord.name), GroupRecord.id)
            ).all()
            return [self._to_group(r) for r in records]

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        with self._database.session() as session:
            record = session.scalars(
                select(GroupRecord).where(
                    GroupRecord.id == group_id,
                    GroupRecord.user_id == self._user_id,
                )
            ).first()
            return self._to_group(record) if record else None

    async def create_group(self, data: GroupInput) -> Group:
        now = self._clock()
        record = GroupRecord(
            user_id=self._user_id,
            name=data.name,
            percentage=data.percentage,
            can_spend=data.can_spend,
            created_at=now,
            updated_at=now,
        )
        with self._database.session() as session:
            session.add(record)
            session.flush()
            return self._to_group(record)

    async def update_group(self, group_id: UUID, data: GroupInput) -> int:
        with self._database.session() as session:
            result = session.execute(
                update(GroupRecord)
                .where(
                    GroupRecord.id == group_id,
                    GroupRecord.user_id == self._user_id,
                )
                .values(
                    name=data.name,
                    percentage=data.percentage,
                    can_spend=data.can_spend,
                    updated_at=self._clock(),
                )
            )
            return result.rowcount

    async def delete_group(self, group_id: UUID) -> int:
        with self._database.session() as session:
            result = session.execute(
                delete(GroupRecord).where(
                    GroupRecord.id == group_id,
                    GroupRecord.user_id == self._user_id,
                )
            )
            return result.rowcount

    # -- transactions -------------------------------------------------------------

    async def list_transactions(self, limit: Optional[int] = None) -> list[Transaction]:
        stmt = (
            select(TransactionRecord)
            .where(TransactionRecord.user_id == self._user_id)
            .order_by(TransactionRecord.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._database.session() as session:
            return [self._to_transaction(r) for r in session.scalars(stmt).all()]

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        with self._database.session() as session:
            record = session.scalars(
                select(TransactionRecord).where(
                    TransactionRecord.id == transaction_id,
                    TransactionRecord.user_id == self._user_id,
                )
            ).first()
            return self._to_transaction(record) if record else None

    async def create_transaction(self, data: TransactionInput) -> Transaction:
        now = self._clock()
        with self._database.session() as session:
            if data.group_id is not None and not self._owns_group(session, data.group_id):
                raise OwnershipError(f"Group not found: {data.group_id}")

            record = TransactionRecord(
                user_id=self._user_id,
                group_id=data.group_id,
                amount=data.amount,
                type=data.type.value,
                concept=data.concept,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            return self._to_transaction(record)

    async def update_transaction(
        self,
        transaction_id: UUID,
        data: TransactionInput,
    ) -> int:
        with self._database.session() as session:
            if data.group_id is not None and not self._owns_group(session, data.group_id):
                raise OwnershipError(f"Group not found: {data.group_id}")

            result = session.execute(
                update(TransactionRecord)
                .where(
                    TransactionRecord.id == transaction_id,
                    TransactionRecord.user_id == self._user_id,
                )
                .values(
                    group_id=data.group_id,
                    amount=data.amount,
                    type=data.type.value,
                    concept=data.concept,
                    updated_at=self._clock(),
                )
            )
            return result.rowcount

    async def delete_transaction(self, transaction_id: UUID) -> int:
        with self._database.session() as session:
            result = session.execute(
                delete(TransactionRecord).where(
                    TransactionRecord.id == transaction_id,
                    TransactionRecord.user_id == self._user_id,
                )
            )
            return result.rowcount

    # -- profile ------------------------------------------------------------------

    async def get_profile(self) -> Optional[UserProfile]:
        with self._database.session() as session:
            record = session.get(ProfileRecord, self._user_id)
            return self._to_profile(record) if record else None

    async def save_profile(
        self,
        full_name: Optional[str] = None,
        general_limit: Optional[float] = None,
    ) -> UserProfile:
        now = self._clock()
        with self._database.session() as session:
            record = session.get(ProfileRecord, self._user_id)
            if record is None:
                record = ProfileRecord(
                    user_id=self._user_id,
                    full_name=full_name,
                    general_limit=general_limit or 0.0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
            else:
                if full_name is not None:
                    record.full_name = full_name
                if general_limit is not None:
                    record.general_limit = general_limit
                record.updated_at = now
            session.flush()
            return self._to_profile(record)

    # -- derived ------------------------------------------------------------------

    def _load_totals(self, session: Session) -> tuple[float, list[GroupTotals], float]:
        """(general_limit, per-group totals name ascending, ungrouped net)."""
        is_income = TransactionRecord.type == TransactionType.INCOME.value
        is_expense = TransactionRecord.type == TransactionType.EXPENSE.value

        rows = session.execute(
            select(
                GroupRecord.id,
                GroupRecord.name,
                GroupRecord.percentage,
                GroupRecord.can_spend,
                func.coalesce(
                    func.sum(case((is_income, TransactionRecord.amount), else_=0.0)), 0.0
                ).label("income_total"),
                func.coalesce(
                    func.sum(case((is_expense, TransactionRecord.amount), else_=0.0)), 0.0
                ).label("expense_total"),
            )
            .outerjoin(
                TransactionRecord,
                and_(
                    TransactionRecord.group_id == GroupRecord.id,
                    TransactionRecord.user_id == GroupRecord.user_id,
                ),
            )
            .where(GroupRecord.user_id == self._user_id)
            .group_by(
                GroupRecord.id,
                GroupRecord.name,
                GroupRecord.percentage,
                GroupRecord.can_spend,
            )
            .order_by(func.lower(GroupRecord.name), GroupRecord.id)
        ).all()

        totals = [
            GroupTotals(
                group_id=row.id,
                group_name=row.name,
                percentage=row.percentage,
                can_spend=row.can_spend,
                income_total=float(row.income_total),
                expense_total=float(row.expense_total),
            )
            for row in rows
        ]

        ungrouped_net = session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case((is_income, TransactionRecord.amount), else_=-TransactionRecord.amount)
                    ),
                    0.0,
                )
            ).where(
                TransactionRecord.user_id == self._user_id,
                TransactionRecord.group_id.is_(None),
            )
        ).scalar_one()

        profile = session.get(ProfileRecord, self._user_id)
        general_limit = profile.general_limit if profile else 0.0

        return general_limit, totals, float(ungrouped_net)

    async def get_user_balances(self) -> list[GroupBalance]:
        with self._database.session() as session:
            general_limit, totals, ungrouped_net = self._load_totals(session)
        return derive_group_balances(general_limit, totals, ungrouped_net)

    async def get_user_summary(self) -> UserSummary:
        with self._database.session() as session:
            general_limit, totals, ungrouped_net = self._load_totals(session)
        return derive_summary(general_limit, totals, ungrouped_net)


class SqlAuditStorage(AuditStorageInterface):
    """Append-only audit log in the `audit_events` table."""

    def __init__(self, database: Database):
        self._database = database

    @staticmethod
    def _to_event(record: AuditEventRecord) -> AuditEvent:
        return AuditEvent(
            event_id=record.event_id,
            timestamp=record.timestamp,
            event_type=AuditEventType(record.event_type),
            severity=AuditSeverity(record.severity),
            user_id=record.user_id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            correlation_id=record.correlation_id,
            description=record.description,
            details=record.details or {},
            error_message=record.error_message,
            is_user_action=record.is_user_action,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        with self._database.session() as session:
            session.add(AuditEventRecord(
                event_id=event.event_id,
                timestamp=event.timestamp,
                event_type=event.event_type.value,
                severity=event.severity.value,
                user_id=event.user_id,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                correlation_id=event.correlation_id,
                description=event.description,
                details=event.details,
                error_message=event.error_message,
                is_user_action=event.is_user_action,
            ))
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        with self._database.session() as session:
            records = session.scalars(
                select(AuditEventRecord)
                .where(
                    AuditEventRecord.entity_type == entity_type,
                    AuditEventRecord.entity_id == entity_id,
                )
                .order_by(AuditEventRecord.timestamp)
            ).all()
            return [self._to_event(r) for r in records]

    async def get_recent_events(
        self,
        user_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRecord)
        if user_id is not None:
            stmt = stmt.where(AuditEventRecord.user_id == user_id)
        stmt = stmt.order_by(AuditEventRecord.timestamp.desc()).limit(limit)
        with self._database.session() as session:
            return [self._to_event(r) for r in session.scalars(stmt).all()]
