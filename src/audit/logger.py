"""
Audit Logger

DESIGN DECISION: Every mutation and every auth action is logged.
This provides:
1. Traceability of who changed what
2. Debugging capability when the store rejects a write
3. A history the user can inspect

The audit logger:
- Is async to match the flows that call it
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_created(
        self,
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a group or transaction insert."""
        await self.log(AuditEventBuilder.entity_created(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_updated(
        self,
        entity_type: str,
        entity_id: Optional[UUID],
        user_id: UUID,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an update of a group, transaction or profile."""
        await self.log(AuditEventBuilder.entity_updated(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_deleted(
        self,
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entity_deleted(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        errors: dict[str, str],
        user_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rejected input."""
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            errors=errors,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_ownership_denied(
        self,
        entity_type: str,
        entity_id: UUID,
        user_id: UUID,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a mutation that matched no row owned by the caller."""
        await self.log(AuditEventBuilder.ownership_denied(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_auth_event(
        self,
        event_type: AuditEventType,
        email: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.auth_event(
            event_type=event_type,
            email=email,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_auth_failed(
        self,
        action: str,
        error_message: str,
        email: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.auth_failed(
            action=action,
            error_message=error_message,
            email=email,
            correlation_id=correlation_id,
        ))

    async def log_persistence_error(
        self,
        action: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a write the store rejected."""
        await self.log(AuditEventBuilder.persistence_error(
            action=action,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
