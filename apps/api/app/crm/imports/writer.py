from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError

from app.crm.imports.duplicates import Resolution, ResolutionTag
from app.crm.imports.repository import RecordStore
from app.metrics import observe_import_batch_failure
from app.otel import mark_span_failed

logger = logging.getLogger("app.crm.imports")

UPDATE_FAILED = "Failed to update record"
INSERT_FAILED = "Batch insert failed"

_NOT_UPDATED = frozenset({"id", "tenant_id", "owner_user_id", "created_at"})


@dataclass
class PendingRow:
    ordinal: int
    data: dict[str, Any]
    resolution: Resolution


@dataclass
class WriteOutcome:
    ordinal: int
    tag: ResolutionTag
    succeeded: bool
    entity_id: uuid.UUID | None = None
    message: str | None = None


def _apply_update(store: RecordStore, entity_type: str, row: PendingRow) -> WriteOutcome:
    record_id = row.resolution.existing_id
    values = {key: value for key, value in row.data.items() if key not in _NOT_UPDATED}
    try:
        updated = record_id is not None and store.update_record(entity_type, record_id, row.data["tenant_id"], values)
    except SQLAlchemyError as exc:
        logger.warning(
            "import.update_failed",
            extra={"entity_type": entity_type, "tenant_id": row.data["tenant_id"], "error": str(exc)[:500]},
        )
        updated = False
    if not updated:
        return WriteOutcome(row.ordinal, row.resolution.tag, False, message=UPDATE_FAILED)
    return WriteOutcome(row.ordinal, row.resolution.tag, True, record_id, "Updated existing record")


def write_batch(store: RecordStore, entity_type: str, rows: list[PendingRow]) -> list[WriteOutcome]:
    """Persist one batch of resolved rows.

    Updates are applied and committed row by row so one failure does not
    affect its neighbours. All remaining rows go through a single insert that
    either commits as a whole or fails every row it carried.
    """
    outcomes: list[WriteOutcome] = []
    inserts: list[tuple[PendingRow, uuid.UUID]] = []

    for row in rows:
        if row.resolution.tag is ResolutionTag.TO_UPDATE:
            outcomes.append(_apply_update(store, entity_type, row))
        elif row.resolution.tag is not ResolutionTag.SKIPPED_DUPLICATE:
            inserts.append((row, uuid.uuid4()))

    if not inserts:
        return outcomes

    try:
        store.insert_records(entity_type, [{**row.data, "id": record_id} for row, record_id in inserts])
    except SQLAlchemyError as exc:
        mark_span_failed(trace.get_current_span(), INSERT_FAILED, exc)
        logger.exception(
            "import.batch_insert_failed",
            extra={"entity_type": entity_type, "row_count": len(inserts)},
        )
        observe_import_batch_failure(entity_type)
        outcomes.extend(WriteOutcome(row.ordinal, row.resolution.tag, False, message=INSERT_FAILED) for row, _ in inserts)
        return outcomes

    for row, record_id in inserts:
        if row.resolution.tag is ResolutionTag.CREATED_WITH_DUPLICATE_WARNING:
            message = "Warning - duplicate found, record created"
        else:
            message = "Record created"
        outcomes.append(WriteOutcome(row.ordinal, row.resolution.tag, True, record_id, message))
    return outcomes
