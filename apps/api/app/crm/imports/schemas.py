from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from app.crm.imports.report import ImportReport


class FieldListRead(BaseModel):
    entity: str
    required_fields: list[str]
    optional_fields: list[str]
    enum_fields: dict[str, list[str]] = Field(default_factory=dict)
    relational_fields: list[str] = Field(default_factory=list)


class FieldErrorRead(BaseModel):
    row: int
    field: str
    message: str
    value: str | None = None


class ImportSummaryRead(BaseModel):
    total_rows: int
    success_count: int
    failure_count: int
    duplicate_count: int
    processing_time_ms: float
    sample_failures: list[FieldErrorRead] = Field(default_factory=list)


class ImportResultRead(BaseModel):
    success: bool
    data: ImportSummaryRead
    error_report: str | None = None

    @classmethod
    def from_report(cls, report: ImportReport, *, sample_size: int, error_report: str | None) -> ImportResultRead:
        samples: list[dict[str, Any]] = [error.to_dict() for error in report.errors[:sample_size]]
        return cls(
            success=report.success,
            data=ImportSummaryRead(
                total_rows=report.total_rows,
                success_count=report.success_count,
                failure_count=report.failure_count,
                duplicate_count=report.duplicate_count,
                processing_time_ms=report.processing_time_ms,
                sample_failures=[FieldErrorRead(**sample) for sample in samples],
            ),
            error_report=error_report,
        )
