"""Per-entity import schemas.

Every importable entity is described by a declarative rule table: each CSV
column carries an ordered tuple of rules that the generic row validator walks.
Adding an entity type is a data change here, not a code change elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from app.crm.imports.errors import UnknownEntityType


@dataclass(frozen=True)
class Required:
    pass


@dataclass(frozen=True)
class EnumOf:
    values: tuple[str, ...]


@dataclass(frozen=True)
class Email:
    pass


@dataclass(frozen=True)
class Date:
    pass


@dataclass(frozen=True)
class Number:
    pass


@dataclass(frozen=True)
class PositiveNumber:
    pass


@dataclass(frozen=True)
class Relational:
    target: str


FieldRule = Required | EnumOf | Email | Date | Number | PositiveNumber | Relational


@dataclass(frozen=True)
class FieldSpec:
    name: str
    attribute: str
    rules: tuple[FieldRule, ...] = ()

    @property
    def required(self) -> bool:
        return any(isinstance(rule, Required) for rule in self.rules)

    def rule(self, kind: type) -> FieldRule | None:
        return next((rule for rule in self.rules if isinstance(rule, kind)), None)


@dataclass(frozen=True)
class EntitySchema:
    entity_type: str
    fields: tuple[FieldSpec, ...]
    natural_key: str | None = None
    _by_name: Mapping[str, FieldSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", MappingProxyType({spec.name: spec for spec in self.fields}))

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.required)

    @property
    def optional_fields(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if not spec.required)

    @property
    def enum_fields(self) -> Mapping[str, tuple[str, ...]]:
        values: dict[str, tuple[str, ...]] = {}
        for spec in self.fields:
            rule = spec.rule(EnumOf)
            if isinstance(rule, EnumOf):
                values[spec.name] = rule.values
        return MappingProxyType(values)

    @property
    def relational_fields(self) -> Mapping[str, str]:
        targets: dict[str, str] = {}
        for spec in self.fields:
            rule = spec.rule(Relational)
            if isinstance(rule, Relational):
                targets[spec.name] = rule.target
        return MappingProxyType(targets)

    @property
    def attributes(self) -> Mapping[str, str]:
        return MappingProxyType({spec.name: spec.attribute for spec in self.fields})

    def spec(self, name: str) -> FieldSpec | None:
        return self._by_name.get(name)


LEAD_STATUSES = ("NEW", "CONTACTED", "QUALIFIED", "UNQUALIFIED", "CONVERTED")
LEAD_SOURCES = (
    "WEBSITE",
    "REFERRAL",
    "COLD_CALL",
    "EMAIL_CAMPAIGN",
    "SOCIAL_MEDIA",
    "TRADE_SHOW",
    "PARTNER",
    "OTHER",
)
INDUSTRIES = (
    "TECHNOLOGY",
    "FINANCE",
    "HEALTHCARE",
    "MANUFACTURING",
    "RETAIL",
    "EDUCATION",
    "REAL_ESTATE",
    "CONSULTING",
    "MEDIA",
    "OTHER",
)
OPPORTUNITY_STAGES = (
    "PROSPECTING",
    "QUALIFICATION",
    "NEEDS_ANALYSIS",
    "VALUE_PROPOSITION",
    "DECISION_MAKERS",
    "PROPOSAL",
    "NEGOTIATION",
    "CLOSED_WON",
    "CLOSED_LOST",
)


LEADS = EntitySchema(
    entity_type="leads",
    fields=(
        FieldSpec("firstName", "first_name", (Required(),)),
        FieldSpec("lastName", "last_name", (Required(),)),
        FieldSpec("company", "company", (Required(),)),
        FieldSpec("email", "email", (Email(),)),
        FieldSpec("phone", "phone"),
        FieldSpec("status", "status", (EnumOf(LEAD_STATUSES),)),
        FieldSpec("source", "source", (EnumOf(LEAD_SOURCES),)),
        FieldSpec("notes", "notes"),
    ),
    natural_key="email",
)

ACCOUNTS = EntitySchema(
    entity_type="accounts",
    fields=(
        FieldSpec("name", "name", (Required(),)),
        FieldSpec("website", "website"),
        FieldSpec("industry", "industry", (EnumOf(INDUSTRIES),)),
        FieldSpec("phone", "phone"),
        FieldSpec("annualRevenue", "annual_revenue", (Number(),)),
        FieldSpec("employees", "employees", (PositiveNumber(),)),
    ),
    natural_key="website",
)

CONTACTS = EntitySchema(
    entity_type="contacts",
    fields=(
        FieldSpec("firstName", "first_name", (Required(),)),
        FieldSpec("lastName", "last_name", (Required(),)),
        FieldSpec("title", "title"),
        FieldSpec("email", "email", (Email(),)),
        FieldSpec("phone", "phone"),
        FieldSpec("department", "department"),
        FieldSpec("accountId", "account_id", (Relational("accounts"),)),
    ),
    natural_key="email",
)

OPPORTUNITIES = EntitySchema(
    entity_type="opportunities",
    fields=(
        FieldSpec("name", "name", (Required(),)),
        FieldSpec("stage", "stage", (Required(), EnumOf(OPPORTUNITY_STAGES))),
        FieldSpec("closeDate", "close_date", (Required(), Date())),
        FieldSpec("amount", "amount", (Number(),)),
        FieldSpec("accountId", "account_id", (Relational("accounts"),)),
        FieldSpec("contactId", "contact_id", (Relational("contacts"),)),
        FieldSpec("probability", "probability", (PositiveNumber(),)),
        FieldSpec("lostReason", "lost_reason"),
        FieldSpec("wonNotes", "won_notes"),
    ),
)

_REGISTRY: Mapping[str, EntitySchema] = MappingProxyType(
    {schema.entity_type: schema for schema in (LEADS, ACCOUNTS, CONTACTS, OPPORTUNITIES)}
)

ENTITY_TYPES: tuple[str, ...] = tuple(_REGISTRY)


def schema_for(entity_type: str) -> EntitySchema:
    schema = _REGISTRY.get(entity_type)
    if schema is None:
        raise UnknownEntityType(entity_type, list(ENTITY_TYPES))
    return schema


def list_fields(entity_type: str) -> dict[str, object]:
    schema = schema_for(entity_type)
    return {
        "entity": schema.entity_type,
        "required_fields": list(schema.required_fields),
        "optional_fields": list(schema.optional_fields),
        "enum_fields": {name: list(values) for name, values in schema.enum_fields.items()},
        "relational_fields": list(schema.relational_fields),
    }
