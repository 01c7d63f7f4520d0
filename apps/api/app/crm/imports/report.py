from __future__ import annotations

import csv
import io
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from app.crm.imports.decoder import RawRow
from app.crm.imports.duplicates import ResolutionTag
from app.crm.imports.validation import FieldError, ValidatedRow
from app.crm.imports.writer import WriteOutcome

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"
STATUS_DUPLICATE = "duplicate"


@dataclass
class RowResult:
    row: int
    status: str
    entity_id: str | None = None
    message: str | None = None
    data: RawRow | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"row": self.row, "status": self.status}
        if self.entity_id is not None:
            payload["entity_id"] = self.entity_id
        if self.message is not None:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class ImportReport:
    entity_type: str
    total_rows: int
    success_count: int = 0
    failure_count: int = 0
    duplicate_count: int = 0
    results: list[RowResult] = field(default_factory=list)
    errors: list[FieldError] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.failure_count == 0

    @property
    def skipped_count(self) -> int:
        return sum(1 for result in self.results if result.status == STATUS_DUPLICATE)


class ImportReportBuilder:
    """Accumulates per-row outcomes for one import call."""

    def __init__(self, entity_type: str, total_rows: int, *, started: float | None = None) -> None:
        self.report = ImportReport(entity_type=entity_type, total_rows=total_rows)
        self.started = time.perf_counter() if started is None else started

    def add_invalid(self, validated: ValidatedRow) -> None:
        self.report.failure_count += 1
        self.report.errors.extend(validated.errors)
        self.report.results.append(
            RowResult(
                row=validated.ordinal,
                status=STATUS_FAILURE,
                message="; ".join(error.message for error in validated.errors),
                data=validated.raw,
            )
        )

    def add_skipped(self, ordinal: int, existing_id: uuid.UUID | None) -> None:
        self.report.duplicate_count += 1
        self.report.results.append(
            RowResult(
                row=ordinal,
                status=STATUS_DUPLICATE,
                entity_id=str(existing_id) if existing_id is not None else None,
                message="Duplicate skipped",
            )
        )

    def add_write(self, outcome: WriteOutcome) -> None:
        if outcome.tag in (ResolutionTag.TO_UPDATE, ResolutionTag.CREATED_WITH_DUPLICATE_WARNING):
            self.report.duplicate_count += 1
        if outcome.succeeded:
            self.report.success_count += 1
            status = STATUS_SUCCESS
        else:
            self.report.failure_count += 1
            status = STATUS_FAILURE
        self.report.results.append(
            RowResult(
                row=outcome.ordinal,
                status=status,
                entity_id=str(outcome.entity_id) if outcome.entity_id is not None else None,
                message=outcome.message,
            )
        )

    def finish_batch(self) -> None:
        self.report.results.sort(key=lambda result: result.row)
        self.report.errors.sort(key=lambda error: error.row)

    def build(self) -> ImportReport:
        self.finish_batch()
        self.report.processing_time_ms = round((time.perf_counter() - self.started) * 1000, 2)
        return self.report


def render_error_report(report: ImportReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["row", "field", "message", "value"])
    for error in report.errors:
        writer.writerow([error.row, error.field, error.message, "" if error.value is None else error.value])
    return buffer.getvalue()
