"""
SQLAlchemy Database Client and Schema

The relational store holds every user-owned row. Two properties of the
schema carry business rules:

1. `transactions.group_id` references `groups.id` with ON DELETE CASCADE,
   so deleting a group removes its transactions in the store itself.
2. CHECK constraints bound amounts, percentages and transaction types,
   so a bypassed validator still cannot write an impossible row.

SQLite needs `PRAGMA foreign_keys=ON` per connection for (1); the client
sets it on every new connection.
"""

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Index,
    String,
    Uuid,
    create_engine,
    event,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import DatabaseSettings, get_settings
from src.models.budget import utc_now
from src.services.storage.interface import ConnectionError, PersistenceError


class Base(DeclarativeBase):
    pass


# =============================================================================
# BUDGET TABLES
# =============================================================================

class GroupRecord(Base):
    __tablename__ = "groups"
    __table_args__ = (
        CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_groups_percentage"),
        Index("idx_groups_user_name", "user_id", "name"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False)
    can_spend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class TransactionRecord(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount"),
        CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    group_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    concept: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class ProfileRecord(Base):
    __tablename__ = "user_profiles"
    __table_args__ = (
        CheckConstraint("general_limit >= 0", name="ck_profiles_general_limit"),
    )

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    general_limit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


# =============================================================================
# AUTH & AUDIT TABLES
# =============================================================================

class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class AuthTokenRecord(Base):
    __tablename__ = "auth_tokens"
    __table_args__ = (
        CheckConstraint("kind IN ('session', 'otp')", name="ck_auth_tokens_kind"),
    )

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


class AuditEventRecord(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
        Index("idx_audit_events_user_time", "user_id", "timestamp"),
    )

    event_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    user_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    entity_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    correlation_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    is_user_action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


# =============================================================================
# CLIENT
# =============================================================================

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Engine and session manager.

    Creates the schema on first connect. `session()` commits on success,
    rolls back on failure and wraps SQLAlchemy errors in PersistenceError.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._settings = settings or get_settings().database
        self._url = url or self._settings.url
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def url(self) -> str:
        return self._url

    def _create_engine(self) -> Engine:
        if not self._url.startswith("sqlite"):
            return create_engine(self._url, echo=self._settings.echo, pool_pre_ping=True)

        in_memory = self._url in ("sqlite://", "sqlite:///:memory:")
        if not in_memory:
            db_path = self._url.split("sqlite:///", 1)[-1]
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(
            self._url,
            echo=self._settings.echo,
            connect_args={"check_same_thread": False},
            # one shared connection, otherwise every session sees an empty database
            poolclass=StaticPool if in_memory else None,
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> Engine:
        """
        Establish the engine and make sure the schema exists.
        """
        if self._engine is None:
            try:
                engine = self._create_engine()
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                Base.metadata.create_all(engine)
            except SQLAlchemyError as e:
                raise ConnectionError(f"Failed to connect to database: {e}")
            self._engine = engine
            self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

        return self._engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Unit of work: commit on success, rollback on error."""
        self.connect()
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Dispose of the engine."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
