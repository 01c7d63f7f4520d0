from __future__ import annotations

import csv
import io

from app.crm.imports.registry import EntitySchema, FieldSpec, schema_for

SAMPLE_VALUES = {
    "closeDate": "2024-12-31",
    "amount": "10000",
    "annualRevenue": "10000",
    "probability": "50",
    "employees": "100",
}


def _sample_value(schema: EntitySchema, spec: FieldSpec) -> str:
    allowed = schema.enum_fields.get(spec.name)
    if allowed:
        return allowed[0]
    if spec.name in SAMPLE_VALUES:
        return SAMPLE_VALUES[spec.name]
    if spec.required:
        return f"sample_{spec.name}"
    return ""


def generate_template(entity_type: str) -> str:
    """Render a header plus one sample row that passes validation for ``entity_type``."""
    schema = schema_for(entity_type)
    ordered = [schema.spec(name) for name in (*schema.required_fields, *schema.optional_fields)]
    specs = [spec for spec in ordered if spec is not None]

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([spec.name for spec in specs])
    writer.writerow([_sample_value(schema, spec) for spec in specs])
    return buffer.getvalue()
