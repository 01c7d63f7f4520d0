from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from sqlalchemy.orm import Session

from app.context import reset_import_run_id, set_import_run_id
from app.core.config import Settings, get_settings
from app.crm.imports import report as report_module
from app.crm.imports import template as template_module
from app.crm.imports.decoder import RawRow, decode
from app.crm.imports.duplicates import DuplicatePolicy, ResolutionTag, resolve
from app.crm.imports.errors import EmptyInput, FileTooLarge, ImportPipelineError
from app.crm.imports.registry import EntitySchema, list_fields, schema_for
from app.crm.imports.report import ImportReport, ImportReportBuilder
from app.crm.imports.repository import RecordStore, SqlAlchemyRecordStore
from app.crm.imports.validation import validate_row
from app.crm.imports.writer import PendingRow, write_batch
from app.metrics import observe_import_rows, observe_import_run
from app.otel import mark_span_failed
from app.services.audit import AuditSink, DbAuditSink

logger = logging.getLogger("app.crm.imports")
tracer = trace.get_tracer("app.crm.imports")


@dataclass
class ActorUser:
    user_id: str
    tenant_id: str | None
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None


@dataclass
class ImportOptions:
    skip_duplicates: bool = False
    update_existing: bool = False
    batch_size: int | None = None
    owner_id: str | None = None

    @property
    def policy(self) -> DuplicatePolicy:
        return DuplicatePolicy(skip_duplicates=self.skip_duplicates, update_existing=self.update_existing)


class ImportService:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def list_fields(self, entity_type: str) -> dict[str, Any]:
        return list_fields(entity_type)

    def generate_template(self, entity_type: str) -> str:
        return template_module.generate_template(entity_type)

    def render_error_report(self, report: ImportReport) -> str:
        return report_module.render_error_report(report)

    def batch_size_for(self, options: ImportOptions) -> int:
        requested = options.batch_size or self.settings.import_default_batch_size
        return max(1, min(requested, self.settings.import_max_batch_size))

    def decode_rows(self, content: bytes) -> list[RawRow]:
        rows = decode(content)
        if not rows:
            raise EmptyInput()
        if len(rows) > self.settings.import_max_rows:
            raise FileTooLarge(f"Maximum {self.settings.import_max_rows} rows allowed per import")
        return rows

    def import_records(
        self,
        session: Session,
        entity_type: str,
        tenant_id: str,
        actor_id: str,
        content: bytes,
        options: ImportOptions | None = None,
        *,
        store: RecordStore | None = None,
        audit_sink: AuditSink | None = None,
    ) -> ImportReport:
        options = options or ImportOptions()
        schema = schema_for(entity_type)
        started = time.perf_counter()
        token = set_import_run_id(str(uuid.uuid4()))

        try:
            with tracer.start_as_current_span("crm.import.run") as run_span:
                run_span.set_attribute("entity_type", entity_type)
                run_span.set_attribute("tenant_id", tenant_id)
                try:
                    rows = self.decode_rows(content)
                except ImportPipelineError as exc:
                    mark_span_failed(run_span, exc.message)
                    logger.warning(
                        "import.rejected",
                        extra={
                            "entity_type": entity_type,
                            "tenant_id": tenant_id,
                            "actor_id": actor_id,
                            "status": exc.code,
                            "error": exc.message,
                        },
                    )
                    observe_import_run(entity_type, "rejected", time.perf_counter() - started)
                    raise

                batch_size = self.batch_size_for(options)
                run_span.set_attribute("row_count", len(rows))
                run_span.set_attribute("batch_size", batch_size)
                logger.info(
                    "import.started",
                    extra={
                        "entity_type": entity_type,
                        "tenant_id": tenant_id,
                        "actor_id": actor_id,
                        "row_count": len(rows),
                        "batch_size": batch_size,
                    },
                )

                report = self._run_batches(
                    schema,
                    rows,
                    tenant_id=tenant_id,
                    owner_id=options.owner_id or actor_id,
                    policy=options.policy,
                    batch_size=batch_size,
                    store=store or SqlAlchemyRecordStore(session),
                    started=started,
                )
                run_span.set_attribute("success_count", report.success_count)
                run_span.set_attribute("failure_count", report.failure_count)

            outcome = "success" if report.success else "partial"
            observe_import_run(entity_type, outcome, time.perf_counter() - started)
            observe_import_rows(entity_type, report_module.STATUS_SUCCESS, report.success_count)
            observe_import_rows(entity_type, report_module.STATUS_FAILURE, report.failure_count)
            observe_import_rows(entity_type, report_module.STATUS_DUPLICATE, report.skipped_count)
            logger.info(
                "import.finished",
                extra={
                    "entity_type": entity_type,
                    "tenant_id": tenant_id,
                    "actor_id": actor_id,
                    "row_count": report.total_rows,
                    "success_count": report.success_count,
                    "failure_count": report.failure_count,
                    "duplicate_count": report.duplicate_count,
                    "duration_ms": report.processing_time_ms,
                    "status": outcome,
                },
            )

            self._record_audit(audit_sink or DbAuditSink(session), report, tenant_id=tenant_id, actor_id=actor_id)
        finally:
            reset_import_run_id(token)
        return report

    def _run_batches(
        self,
        schema: EntitySchema,
        rows: list[RawRow],
        *,
        tenant_id: str,
        owner_id: str,
        policy: DuplicatePolicy,
        batch_size: int,
        store: RecordStore,
        started: float,
    ) -> ImportReport:
        builder = ImportReportBuilder(schema.entity_type, len(rows), started=started)

        for batch_index, offset in enumerate(range(0, len(rows), batch_size)):
            batch = rows[offset : offset + batch_size]
            with tracer.start_as_current_span("crm.import.batch") as batch_span:
                batch_span.set_attribute("batch_index", batch_index)
                batch_span.set_attribute("row_count", len(batch))

                pending: list[PendingRow] = []
                for ordinal, raw_row in enumerate(batch, start=offset + 1):
                    validated = validate_row(schema.entity_type, raw_row, ordinal, tenant_id, store)
                    if validated.data is None:
                        builder.add_invalid(validated)
                        continue
                    data = {**validated.data, "owner_user_id": owner_id}
                    resolution = resolve(schema, data, policy, tenant_id, store)
                    if resolution.tag is ResolutionTag.SKIPPED_DUPLICATE:
                        builder.add_skipped(ordinal, resolution.existing_id)
                        continue
                    pending.append(PendingRow(ordinal=ordinal, data=data, resolution=resolution))

                for outcome in write_batch(store, schema.entity_type, pending):
                    builder.add_write(outcome)
                builder.finish_batch()

            logger.debug(
                "import.batch_written",
                extra={
                    "entity_type": schema.entity_type,
                    "tenant_id": tenant_id,
                    "batch_index": batch_index,
                    "row_count": len(batch),
                },
            )

        return builder.build()

    def _record_audit(self, sink: AuditSink, report: ImportReport, *, tenant_id: str, actor_id: str) -> None:
        outcome = "failure" if report.errors else "success"
        try:
            sink.record_import(
                tenant_id=tenant_id,
                actor_id=actor_id,
                entity_type=report.entity_type,
                outcome=outcome,
                metadata={
                    "tenant_id": tenant_id,
                    "total_rows": report.total_rows,
                    "success_count": report.success_count,
                    "failure_count": report.failure_count,
                    "duplicate_count": report.duplicate_count,
                },
            )
        except Exception:
            logger.exception(
                "import.audit_failed",
                extra={"entity_type": report.entity_type, "tenant_id": tenant_id, "actor_id": actor_id},
            )

    def import_leads(self, session: Session, tenant_id: str, actor_id: str, content: bytes, options: ImportOptions | None = None) -> ImportReport:
        return self.import_records(session, "leads", tenant_id, actor_id, content, options)

    def import_accounts(self, session: Session, tenant_id: str, actor_id: str, content: bytes, options: ImportOptions | None = None) -> ImportReport:
        return self.import_records(session, "accounts", tenant_id, actor_id, content, options)

    def import_contacts(self, session: Session, tenant_id: str, actor_id: str, content: bytes, options: ImportOptions | None = None) -> ImportReport:
        return self.import_records(session, "contacts", tenant_id, actor_id, content, options)

    def import_opportunities(
        self,
        session: Session,
        tenant_id: str,
        actor_id: str,
        content: bytes,
        options: ImportOptions | None = None,
    ) -> ImportReport:
        return self.import_records(session, "opportunities", tenant_id, actor_id, content, options)
