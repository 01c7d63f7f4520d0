from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from app.crm.imports.registry import EntitySchema


class ResolutionTag(str, enum.Enum):
    TO_INSERT = "TO_INSERT"
    TO_UPDATE = "TO_UPDATE"
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"
    CREATED_WITH_DUPLICATE_WARNING = "CREATED_WITH_DUPLICATE_WARNING"


@dataclass(frozen=True)
class DuplicatePolicy:
    skip_duplicates: bool = False
    update_existing: bool = False


@dataclass(frozen=True)
class Resolution:
    tag: ResolutionTag
    existing_id: uuid.UUID | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.existing_id is not None


class NaturalKeyLookup(Protocol):
    def find_by_natural_key(
        self,
        entity_type: str,
        attribute: str,
        value: Any,
        tenant_id: str,
    ) -> uuid.UUID | None: ...


INSERT = Resolution(ResolutionTag.TO_INSERT)


def resolve(
    schema: EntitySchema,
    data: dict[str, Any],
    policy: DuplicatePolicy,
    tenant_id: str,
    lookup: NaturalKeyLookup,
) -> Resolution:
    """Decide how a validated record is written given any tenant-scoped match on its natural key.

    Skipping wins when both ``skip_duplicates`` and ``update_existing`` are set.
    """
    if schema.natural_key is None:
        return INSERT
    spec = schema.spec(schema.natural_key)
    if spec is None:
        return INSERT
    value = data.get(spec.attribute)
    if value is None or value == "":
        return INSERT

    existing_id = lookup.find_by_natural_key(schema.entity_type, spec.attribute, value, tenant_id)
    if existing_id is None:
        return INSERT
    if policy.skip_duplicates:
        return Resolution(ResolutionTag.SKIPPED_DUPLICATE, existing_id)
    if policy.update_existing:
        return Resolution(ResolutionTag.TO_UPDATE, existing_id)
    return Resolution(ResolutionTag.CREATED_WITH_DUPLICATE_WARNING, existing_id)
