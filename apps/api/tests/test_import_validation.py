from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.crm.imports.repository import SqlAlchemyRecordStore
from app.crm.imports.validation import validate_row
from app.crm.models import CRMAccount


class CountingLookup:
    def __init__(self, known: set[uuid.UUID] | None = None) -> None:
        self.known = known or set()
        self.calls: list[tuple[str, uuid.UUID, str]] = []

    def exists(self, entity_type: str, record_id: uuid.UUID, tenant_id: str) -> bool:
        self.calls.append((entity_type, record_id, tenant_id))
        return record_id in self.known


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def test_lead_missing_required_fields_reports_each_one() -> None:
    validated = validate_row("leads", {"email": "a@x.io"}, 1, "tenant-1", CountingLookup())

    assert not validated.is_valid
    assert validated.data is None
    assert [(error.field, error.message) for error in validated.errors] == [
        ("firstName", "firstName is required"),
        ("lastName", "lastName is required"),
        ("company", "company is required"),
    ]
    assert all(error.row == 1 and error.value is None for error in validated.errors)


def test_blank_required_value_keeps_raw_value() -> None:
    validated = validate_row(
        "accounts",
        {"name": "  "},
        4,
        "tenant-1",
        CountingLookup(),
    )
    assert [error.to_dict() for error in validated.errors] == [
        {"row": 4, "field": "name", "message": "name is required", "value": "  "}
    ]


def test_invalid_stage_is_the_only_error() -> None:
    row = {"name": "Big Deal", "stage": "WON", "closeDate": "2024-12-31"}
    validated = validate_row("opportunities", row, 2, "tenant-1", CountingLookup())

    assert len(validated.errors) == 1
    error = validated.errors[0]
    assert error.field == "stage"
    assert error.value == "WON"
    assert error.message.startswith("Invalid stage. Must be one of: PROSPECTING, QUALIFICATION")


def test_checks_accumulate_in_category_order() -> None:
    row = {
        "name": "",
        "stage": "NOPE",
        "closeDate": "31/12/2024",
        "amount": "lots",
        "probability": "-5",
        "accountId": "not-a-uuid",
    }
    validated = validate_row("opportunities", row, 3, "tenant-1", CountingLookup())

    assert [(error.field, error.message) for error in validated.errors] == [
        ("name", "name is required"),
        ("stage", "Invalid stage. Must be one of: " + ", ".join(
            [
                "PROSPECTING",
                "QUALIFICATION",
                "NEEDS_ANALYSIS",
                "VALUE_PROPOSITION",
                "DECISION_MAKERS",
                "PROPOSAL",
                "NEGOTIATION",
                "CLOSED_WON",
                "CLOSED_LOST",
            ]
        )),
        ("closeDate", "Invalid date format. Use YYYY-MM-DD"),
        ("amount", "Invalid number format"),
        ("probability", "Must be a positive number"),
        ("accountId", "Invalid accountId: Record not found"),
    ]


def test_email_format() -> None:
    lookup = CountingLookup()
    bad = validate_row("contacts", {"firstName": "A", "lastName": "B", "email": "nobody@nowhere"}, 1, "t", lookup)
    good = validate_row("contacts", {"firstName": "A", "lastName": "B", "email": "a.b@example.com"}, 1, "t", lookup)

    assert [error.message for error in bad.errors] == ["Invalid email format"]
    assert good.is_valid


def test_number_rejects_non_finite_values() -> None:
    validated = validate_row("accounts", {"name": "Acme", "annualRevenue": "nan", "employees": "inf"}, 1, "t", CountingLookup())
    assert [error.message for error in validated.errors] == ["Invalid number format", "Invalid number format"]


def test_valid_row_is_normalized() -> None:
    account_id = uuid.uuid4()
    lookup = CountingLookup({account_id})
    row = {
        "name": " Renewal ",
        "stage": "PROPOSAL",
        "closeDate": "2025-03-01T10:30:00",
        "amount": "1250.50",
        "probability": "40",
        "accountId": str(account_id),
        "lostReason": "",
        "unmapped": "ignored",
    }
    validated = validate_row("opportunities", row, 1, "tenant-9", lookup)

    assert validated.is_valid
    assert validated.data == {
        "tenant_id": "tenant-9",
        "name": "Renewal",
        "stage": "PROPOSAL",
        "close_date": date(2025, 3, 1),
        "amount": 1250.5,
        "probability": 40.0,
        "account_id": account_id,
    }
    assert lookup.calls == [("accounts", account_id, "tenant-9")]


def test_blank_relational_value_is_not_looked_up() -> None:
    lookup = CountingLookup()
    validated = validate_row("contacts", {"firstName": "A", "lastName": "B", "accountId": ""}, 1, "t", lookup)
    assert validated.is_valid
    assert lookup.calls == []


def test_relational_lookup_is_scoped_to_tenant(db_session: Session) -> None:
    account = CRMAccount(tenant_id="tenant-a", name="Acme")
    db_session.add(account)
    db_session.commit()
    store = SqlAlchemyRecordStore(db_session)
    row = {"firstName": "Ada", "lastName": "Lovelace", "accountId": str(account.id)}

    same_tenant = validate_row("contacts", row, 1, "tenant-a", store)
    other_tenant = validate_row("contacts", row, 1, "tenant-b", store)

    assert same_tenant.is_valid
    assert same_tenant.data is not None
    assert same_tenant.data["account_id"] == account.id
    assert [error.message for error in other_tenant.errors] == ["Invalid accountId: Record not found"]
