from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

from sqlalchemy import Table, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crm.models import CRMAccount, CRMContact, CRMLead, CRMOpportunity, utcnow

logger = logging.getLogger("app.crm.imports")

MODELS: dict[str, type[Any]] = {
    "leads": CRMLead,
    "accounts": CRMAccount,
    "contacts": CRMContact,
    "opportunities": CRMOpportunity,
}


class RecordStore(Protocol):
    def exists(self, entity_type: str, record_id: uuid.UUID, tenant_id: str) -> bool: ...

    def find_by_natural_key(
        self,
        entity_type: str,
        attribute: str,
        value: Any,
        tenant_id: str,
    ) -> uuid.UUID | None: ...

    def update_record(
        self,
        entity_type: str,
        record_id: uuid.UUID,
        tenant_id: str,
        values: dict[str, Any],
    ) -> bool: ...

    def insert_records(self, entity_type: str, rows: list[dict[str, Any]]) -> None: ...


def _scalar_default(table: Table, column_name: str) -> Any:
    column = table.columns[column_name]
    default = column.default
    if default is not None and default.is_scalar:
        return default.arg
    return None


def _align_rows(table: Table, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # executemany binds every row against the first row's keys.
    keys: set[str] = set()
    for row in rows:
        keys.update(row)
    aligned: list[dict[str, Any]] = []
    for row in rows:
        filled = dict(row)
        for key in keys - row.keys():
            filled[key] = _scalar_default(table, key)
        aligned.append(filled)
    return aligned


class SqlAlchemyRecordStore:
    """Tenant-scoped reads and writes for import targets on one request session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def exists(self, entity_type: str, record_id: uuid.UUID, tenant_id: str) -> bool:
        model = MODELS[entity_type]
        try:
            found = self.session.scalar(
                select(model.id).where(model.id == record_id, model.tenant_id == tenant_id).limit(1)
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                "import.relation_lookup_failed",
                extra={"entity_type": entity_type, "tenant_id": tenant_id, "error": str(exc)[:500]},
            )
            return False
        return found is not None

    def find_by_natural_key(
        self,
        entity_type: str,
        attribute: str,
        value: Any,
        tenant_id: str,
    ) -> uuid.UUID | None:
        model = MODELS[entity_type]
        column = getattr(model, attribute)
        try:
            return self.session.scalar(
                select(model.id)
                .where(model.tenant_id == tenant_id, column == value)
                .order_by(model.created_at.asc())
                .limit(1)
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                "import.duplicate_lookup_failed",
                extra={"entity_type": entity_type, "tenant_id": tenant_id, "error": str(exc)[:500]},
            )
            return None

    def update_record(
        self,
        entity_type: str,
        record_id: uuid.UUID,
        tenant_id: str,
        values: dict[str, Any],
    ) -> bool:
        model = MODELS[entity_type]
        statement = (
            update(model)
            .where(model.id == record_id, model.tenant_id == tenant_id)
            .values(**values, updated_at=utcnow())
        )
        try:
            result = self.session.execute(statement)
            if result.rowcount == 0:
                self.session.rollback()
                return False
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return True

    def insert_records(self, entity_type: str, rows: list[dict[str, Any]]) -> None:
        """Insert ``rows`` in one statement, skipping rows that hit a uniqueness constraint."""
        if not rows:
            return
        table: Table = MODELS[entity_type].__table__
        now = utcnow()
        stamped = [{"created_at": now, "updated_at": now, **row} for row in rows]

        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            statement = postgresql.insert(table).on_conflict_do_nothing()
        elif dialect == "sqlite":
            statement = sqlite.insert(table).on_conflict_do_nothing()
        else:
            statement = insert(table)

        try:
            self.session.execute(statement, _align_rows(table, stamped))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
