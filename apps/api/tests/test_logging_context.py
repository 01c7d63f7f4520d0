from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.context import reset_correlation_id, set_correlation_id
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.imports.api import get_current_user
from app.crm.imports.service import ActorUser
from app.logging import CorrelationIdFilter, JsonLogFormatter
from app.main import app


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


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            tenant_id="tenant-1",
            permissions={"crm.leads.create"},
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _lead_file() -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["firstName", "lastName", "company"])
    writer.writerow(["Ada", "Lovelace", "Analytical"])
    writer.writerow(["", "Turing", "Bletchley"])
    return output.getvalue().encode("utf-8")


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/crm/import/fields/invoices", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 422

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/import/fields/{entity}"
        and getattr(record, "status_code", None) == 422
        and getattr(record, "entity_type", None) == "invoices"
        and record.levelno == logging.WARNING
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_import_summary(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/crm/import/leads",
        files={"file": ("leads.csv", _lead_file(), "text/csv")},
        headers={"X-Correlation-Id": "abc-456"},
    )
    assert response.status_code == 200

    import_records = [record for record in caplog.records if record.name == "app.crm.imports"]
    started = [record for record in import_records if record.getMessage() == "import.started"]
    finished = [record for record in import_records if record.getMessage() == "import.finished"]
    assert started and finished

    summary = finished[-1]
    assert getattr(summary, "entity_type", None) == "leads"
    assert getattr(summary, "tenant_id", None) == "tenant-1"
    assert getattr(summary, "row_count", None) == 2
    assert getattr(summary, "success_count", None) == 1
    assert getattr(summary, "failure_count", None) == 1
    assert getattr(summary, "status", None) == "partial"
    assert getattr(summary, "import_run_id", None)
    assert getattr(summary, "import_run_id", None) == getattr(started[-1], "import_run_id", None)


def test_json_formatter_emits_known_fields_only() -> None:
    token = set_correlation_id("corr-json-1")
    try:
        record = logging.LogRecord("app.crm.imports", logging.INFO, __file__, 1, "import.finished", None, None)
        record.entity_type = "accounts"
        record.success_count = 3
        record.error = "x" * 600
        record.unrelated = "dropped"
        CorrelationIdFilter().filter(record)
    finally:
        reset_correlation_id(token)

    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "app.crm.imports"
    assert payload["msg"] == "import.finished"
    assert payload["correlation_id"] == "corr-json-1"
    assert payload["fields"]["entity_type"] == "accounts"
    assert payload["fields"]["success_count"] == 3
    assert len(payload["fields"]["error"]) == 500
    assert "unrelated" not in payload["fields"]
