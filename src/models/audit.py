"""
Audit Models for Personal Budget

Every mutation and every auth action is recorded as an audit event.
This provides:
1. Traceability of who changed what
2. Debugging information when the store or the rate provider fails
3. A history the user can inspect

Audit events are append-only. They are never modified or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.models.budget import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Auth
    USER_SIGNED_UP = "user_signed_up"
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    SIGN_IN_LINK_SENT = "sign_in_link_sent"
    PASSWORD_UPDATED = "password_updated"
    PROFILE_UPDATED = "profile_updated"
    AUTH_FAILED = "auth_failed"

    # Groups
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Rejections
    VALIDATION_FAILED = "validation_failed"
    OWNERSHIP_DENIED = "ownership_denied"

    # Exchange rate
    EXCHANGE_RATE_FALLBACK = "exchange_rate_fallback"

    # System events
    PERSISTENCE_ERROR = "persistence_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context
    user_id: Optional[UUID] = Field(
        default=None,
        description="User the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'transaction', 'profile')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events of one request"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_created("group", group_id, user_id)
        event = AuditEventBuilder.persistence_error("create group", str(e), user_id)
    """

    _CREATED = {
        "group": AuditEventType.GROUP_CREATED,
        "transaction": AuditEventType.TRANSACTION_CREATED,
    }
    _UPDATED = {
        "group": AuditEventType.GROUP_UPDATED,
        "transaction": AuditEventType.TRANSACTION_UPDATED,
        "profile": AuditEventType.PROFILE_UPDATED,
    }
    _DELETED = {
        "group": AuditEventType.GROUP_DELETED,
        "transaction": AuditEventType.TRANSACTION_DELETED,
    }

    @staticmethod
    def entity_created(
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._CREATED[entity_type],
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} created",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def entity_updated(
        entity_type: str,
        entity_id: Optional[UUID],
        user_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._UPDATED[entity_type],
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} updated",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def entity_deleted(
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._DELETED[entity_type],
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} deleted",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        errors: dict[str, str],
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} validation failed on {len(errors)} fields",
            details={"errors": errors},
        )

    @staticmethod
    def ownership_denied(
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OWNERSHIP_DENIED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{action.capitalize()} affected no {entity_type} owned by the user",
            details={"action": action},
        )

    @staticmethod
    def auth_event(
        event_type: AuditEventType,
        email: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Auth: {event_type.value.replace('_', ' ')}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def auth_failed(
        action: str,
        error_message: str,
        email: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            correlation_id=correlation_id,
            description=f"Auth failed: {action}",
            error_message=error_message,
            details={"email": email} if email else {},
        )

    @staticmethod
    def exchange_rate_fallback(
        error_message: str,
        default_rate: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXCHANGE_RATE_FALLBACK,
            severity=AuditSeverity.WARNING,
            description="Exchange rate provider failed, using default rate",
            error_message=error_message,
            details={"default_rate": default_rate},
        )

    @staticmethod
    def persistence_error(
        action: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Store rejected: {action}",
            error_message=error_message,
        )
