"""
Data Models Package

This package contains all Pydantic models used in the Personal Budget system.
All data flowing through the system must conform to these schemas.
"""

from src.models.budget import (
    ActionResult,
    AuthenticatedUser,
    AuthSession,
    Currency,
    DashboardView,
    ExchangeRate,
    Group,
    GroupBalance,
    GroupInput,
    GroupTotals,
    ProfileInput,
    Transaction,
    TransactionInput,
    TransactionType,
    UserProfile,
    UserSummary,
    utc_now,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "ActionResult",
    "AuthenticatedUser",
    "AuthSession",
    "Currency",
    "DashboardView",
    "ExchangeRate",
    "Group",
    "GroupBalance",
    "GroupInput",
    "GroupTotals",
    "ProfileInput",
    "Transaction",
    "TransactionInput",
    "TransactionType",
    "UserProfile",
    "UserSummary",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
