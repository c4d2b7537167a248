"""
Core Data Models for Personal Budget

These models define the schemas for all data flowing through the system:
groups, transactions, profiles, derived balances and the results handed
back to the presentation layer.

Money is carried as float. Amounts are bounded to two decimals by the
validation layer and derived figures are rounded to cents.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
)


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction. Expenses reduce availability."""
    INCOME = "income"
    EXPENSE = "expense"


class Currency(str, Enum):
    """Currencies accepted at transaction entry."""
    PEN = "PEN"
    USD = "USD"


# =============================================================================
# IDENTITY
# =============================================================================

class AuthenticatedUser(BaseModel):
    """
    Identity issued by the auth provider.

    Every owned entity carries this user's id.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    email: str


class AuthSession(BaseModel):
    """A sign-in session handed back to the client."""

    token: str
    user: AuthenticatedUser
    expires_at: datetime


# =============================================================================
# GROUPS & TRANSACTIONS
# =============================================================================

class GroupInput(BaseModel):
    """Normalized group data accepted by the mutation operations."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Budget category name"
    )
    percentage: float = Field(
        ...,
        gt=0,
        le=100,
        description="Share of the general limit claimed by this group"
    )
    can_spend: bool = Field(
        default=False,
        description="Whether the group is meant to be spent from"
    )


class Group(GroupInput):
    """A stored budget category."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TransactionInput(BaseModel):
    """Normalized transaction data accepted by the mutation operations."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: float = Field(
        ...,
        ge=0.01,
        le=999999.99,
        description="Positive amount of the movement"
    )
    concept: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="What the money was for"
    )
    type: TransactionType
    group_id: Optional[UUID] = Field(
        default=None,
        description="Group this movement counts against, if any"
    )


class Transaction(TransactionInput):
    """A stored income or expense."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def signed_amount(self) -> float:
        """Amount with the balance sign convention applied."""
        if self.type == TransactionType.EXPENSE:
            return -self.amount
        return self.amount


# =============================================================================
# PROFILE
# =============================================================================

class ProfileInput(BaseModel):
    """Normalized profile data."""
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    general_limit: Optional[float] = Field(default=None, ge=0)


class UserProfile(BaseModel):
    """Per-user settings, including the general limit balances derive from."""

    user_id: UUID
    full_name: Optional[str] = None
    general_limit: float = Field(default=0.0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# DERIVED BALANCES
# =============================================================================

class GroupTotals(BaseModel):
    """Aggregated income and expense of one group, before derivation."""

    group_id: UUID
    group_name: str
    percentage: float
    can_spend: bool = False
    income_total: float = 0.0
    expense_total: float = 0.0

    @property
    def net(self) -> float:
        return self.income_total - self.expense_total


class GroupBalance(BaseModel):
    """
    Derived balance of a group.

    Mirrors one row of `get_user_balances`: the user-wide figures are
    repeated on every row.
    """
    model_config = ConfigDict(frozen=True)

    group_id: UUID
    group_name: str
    percentage: float
    can_spend: bool
    max_amount: float
    available_amount: float
    general_max: float
    total_available: float

    @computed_field
    @property
    def available_ratio(self) -> float:
        """Share of the ceiling still available, in percent."""
        if self.max_amount <= 0:
            return 0.0
        return round(self.available_amount / self.max_amount * 100, 2)


class UserSummary(BaseModel):
    """User-wide ceiling and availability."""
    model_config = ConfigDict(frozen=True)

    general_max: float
    total_available: float


# =============================================================================
# EXCHANGE RATE
# =============================================================================

class ExchangeRate(BaseModel):
    """A cached rate and the moment it was stored."""
    model_config = ConfigDict(frozen=True)

    rate: float = Field(..., gt=0, description="PEN per one USD")
    timestamp: float = Field(..., description="Clock reading when cached")


# =============================================================================
# RESULTS
# =============================================================================

class ActionResult(BaseModel):
    """
    Outcome of an operation, as returned to the presentation layer.

    Failures never raise past the flow boundary; they come back here.
    """

    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    field_errors: dict[str, str] = Field(default_factory=dict)
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ActionResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        error: str,
        field_errors: Optional[dict[str, str]] = None,
    ) -> "ActionResult":
        return cls(success=False, error=error, field_errors=field_errors or {})


class DashboardView(BaseModel):
    """Everything the dashboard renders for one user."""

    summary: UserSummary
    balances: list[GroupBalance] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)
