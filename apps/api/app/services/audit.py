from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.models.audit import AuditLog


class AuditSink(Protocol):
    def record_import(
        self,
        *,
        tenant_id: str,
        actor_id: str,
        entity_type: str,
        outcome: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


def write_audit_log(
    db: Session,
    *,
    tenant_id: str,
    actor_id: str,
    action: str,
    entity_type: str,
    outcome: str,
    metadata: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> AuditLog:
    event = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        outcome=outcome,
        correlation_id=correlation_id or get_correlation_id(),
        event_metadata=metadata or {},
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


class DbAuditSink:
    """Writes import audit records into ``audit_logs`` on the request session."""

    action = "crm.import"

    def __init__(self, db: Session, *, correlation_id: str | None = None) -> None:
        self.db = db
        self.correlation_id = correlation_id

    def record_import(
        self,
        *,
        tenant_id: str,
        actor_id: str,
        entity_type: str,
        outcome: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            write_audit_log(
                self.db,
                tenant_id=tenant_id,
                actor_id=actor_id,
                action=self.action,
                entity_type=entity_type,
                outcome=outcome,
                metadata=metadata,
                correlation_id=self.correlation_id,
            )
        except SQLAlchemyError:
            self.db.rollback()
            raise
