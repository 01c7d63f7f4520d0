from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

from app.crm.imports.decoder import RawRow
from app.crm.imports.registry import (
    Date,
    Email,
    EntitySchema,
    EnumOf,
    FieldSpec,
    Number,
    PositiveNumber,
    Relational,
    schema_for,
)


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class RelationLookup(Protocol):
    def exists(self, entity_type: str, record_id: uuid.UUID, tenant_id: str) -> bool: ...


@dataclass(frozen=True)
class FieldError:
    row: int
    field: str
    message: str
    value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message, "value": self.value}


@dataclass
class ValidatedRow:
    ordinal: int
    raw: RawRow
    data: dict[str, Any] | None = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _blank(value: str | None) -> bool:
    return value is None or value.strip() == ""


def parse_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def parse_number(value: str) -> float | None:
    try:
        parsed = float(value)
    except ValueError:
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def parse_identifier(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _check_required(spec: FieldSpec, value: str | None, ordinal: int) -> list[FieldError]:
    if _blank(value):
        return [FieldError(ordinal, spec.name, f"{spec.name} is required", value)]
    return []


def _check_enum(spec: FieldSpec, rule: EnumOf, value: str, ordinal: int) -> list[FieldError]:
    if value in rule.values:
        return []
    message = f"Invalid {spec.name}. Must be one of: {', '.join(rule.values)}"
    return [FieldError(ordinal, spec.name, message, value)]


def _check_email(spec: FieldSpec, value: str, ordinal: int) -> list[FieldError]:
    if EMAIL_RE.match(value):
        return []
    return [FieldError(ordinal, spec.name, "Invalid email format", value)]


def _check_date(spec: FieldSpec, value: str, ordinal: int) -> list[FieldError]:
    if parse_date(value) is not None:
        return []
    return [FieldError(ordinal, spec.name, "Invalid date format. Use YYYY-MM-DD", value)]


def _check_number(spec: FieldSpec, value: str, ordinal: int, *, non_negative: bool) -> list[FieldError]:
    parsed = parse_number(value)
    if parsed is None:
        return [FieldError(ordinal, spec.name, "Invalid number format", value)]
    if non_negative and parsed < 0:
        return [FieldError(ordinal, spec.name, "Must be a positive number", value)]
    return []


def _check_relation(
    spec: FieldSpec,
    rule: Relational,
    value: str,
    ordinal: int,
    tenant_id: str,
    lookup: RelationLookup,
) -> list[FieldError]:
    record_id = parse_identifier(value)
    if record_id is not None and lookup.exists(rule.target, record_id, tenant_id):
        return []
    return [FieldError(ordinal, spec.name, f"Invalid {spec.name}: Record not found", value)]


def _row_errors(
    schema: EntitySchema,
    raw_row: RawRow,
    ordinal: int,
    tenant_id: str,
    lookup: RelationLookup,
) -> list[FieldError]:
    errors: list[FieldError] = []

    for spec in schema.fields:
        if spec.required:
            errors.extend(_check_required(spec, raw_row.get(spec.name), ordinal))

    present = [(spec, raw_row[spec.name]) for spec in schema.fields if not _blank(raw_row.get(spec.name))]

    for spec, value in present:
        rule = spec.rule(EnumOf)
        if isinstance(rule, EnumOf):
            errors.extend(_check_enum(spec, rule, value, ordinal))
    for spec, value in present:
        if spec.rule(Email) is not None:
            errors.extend(_check_email(spec, value, ordinal))
    for spec, value in present:
        if spec.rule(Date) is not None:
            errors.extend(_check_date(spec, value, ordinal))
    for spec, value in present:
        if spec.rule(Number) is not None:
            errors.extend(_check_number(spec, value, ordinal, non_negative=False))
        elif spec.rule(PositiveNumber) is not None:
            errors.extend(_check_number(spec, value, ordinal, non_negative=True))
    for spec, value in present:
        rule = spec.rule(Relational)
        if isinstance(rule, Relational):
            errors.extend(_check_relation(spec, rule, value, ordinal, tenant_id, lookup))

    return errors


def normalize_row(schema: EntitySchema, raw_row: RawRow, tenant_id: str) -> dict[str, Any]:
    """Convert a row that passed validation into typed record attributes."""
    data: dict[str, Any] = {"tenant_id": tenant_id}
    for spec in schema.fields:
        raw_value = raw_row.get(spec.name)
        if _blank(raw_value):
            continue
        value = raw_value.strip()
        if spec.rule(EnumOf) is not None:
            data[spec.attribute] = value
        elif spec.rule(Date) is not None:
            data[spec.attribute] = parse_date(value)
        elif spec.rule(Number) is not None or spec.rule(PositiveNumber) is not None:
            data[spec.attribute] = parse_number(value)
        elif spec.rule(Relational) is not None:
            data[spec.attribute] = parse_identifier(value)
        else:
            data[spec.attribute] = value
    return data


def validate_row(
    entity_type: str,
    raw_row: RawRow,
    ordinal: int,
    tenant_id: str,
    lookup: RelationLookup,
) -> ValidatedRow:
    schema = schema_for(entity_type)
    errors = _row_errors(schema, raw_row, ordinal, tenant_id, lookup)
    if errors:
        return ValidatedRow(ordinal=ordinal, raw=raw_row, errors=errors)
    return ValidatedRow(ordinal=ordinal, raw=raw_row, data=normalize_row(schema, raw_row, tenant_id))
