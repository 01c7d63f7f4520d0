from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.crm.imports.errors import FileTooLarge, ImportPipelineError, MalformedInput
from app.crm.imports.registry import schema_for
from app.crm.imports.schemas import FieldListRead, ImportResultRead
from app.crm.imports.service import ActorUser, ImportOptions, ImportService
from app.services.audit import DbAuditSink

router = APIRouter(prefix="/api/crm/import", tags=["crm.import"])
import_service = ImportService()

CSV_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel", "text/plain"}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def pipeline_error_response(request: Request, exc: ImportPipelineError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.to_details(),
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    tenant_id = auth_user.tenant_id or request.headers.get("x-tenant-id")
    return ActorUser(
        user_id=auth_user.sub,
        tenant_id=tenant_id,
        permissions=set(auth_user.roles),
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def require_tenant(user: ActorUser) -> str:
    if not user.tenant_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing tenant")
    return user.tenant_id


def _read_upload(file: UploadFile) -> bytes:
    filename = (file.filename or "").lower()
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if not filename.endswith(".csv") and content_type not in CSV_CONTENT_TYPES:
        raise MalformedInput("Only CSV files are allowed")

    limit = get_settings().import_max_upload_bytes
    content = file.file.read(limit + 1)
    if len(content) > limit:
        raise FileTooLarge(f"File exceeds the {limit} byte upload limit")
    return content


@router.get("/fields/{entity}", response_model=FieldListRead)
def get_import_fields(request: Request, entity: str) -> FieldListRead | JSONResponse:
    try:
        return FieldListRead(**import_service.list_fields(entity))
    except ImportPipelineError as exc:
        return pipeline_error_response(request, exc)


@router.get("/template/{entity}")
def download_import_template(request: Request, entity: str) -> Response:
    try:
        body = import_service.generate_template(entity)
    except ImportPipelineError as exc:
        return pipeline_error_response(request, exc)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={entity}_template.csv"},
    )


@router.post("/{entity}", response_model=ImportResultRead)
def import_csv(
    request: Request,
    entity: str,
    file: UploadFile = File(...),
    skip_duplicates: bool = Form(default=False),
    update_existing: bool = Form(default=False),
    batch_size: int | None = Form(default=None),
    owner_id: str | None = Form(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ImportResultRead | JSONResponse:
    try:
        schema = schema_for(entity)
        require_permission(user, f"crm.{schema.entity_type}.create")
        tenant_id = require_tenant(user)
        content = _read_upload(file)
        report = import_service.import_records(
            db,
            schema.entity_type,
            tenant_id,
            user.user_id,
            content,
            ImportOptions(
                skip_duplicates=skip_duplicates,
                update_existing=update_existing,
                batch_size=batch_size,
                owner_id=owner_id or None,
            ),
            audit_sink=DbAuditSink(db, correlation_id=user.correlation_id),
        )
    except ImportPipelineError as exc:
        return pipeline_error_response(request, exc)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_import_failed",
            message=str(exc.detail),
            details=exc.detail,
        )

    error_report = None
    if report.errors:
        rendered = import_service.render_error_report(report)
        error_report = base64.b64encode(rendered.encode("utf-8")).decode("ascii")
    return ImportResultRead.from_report(
        report,
        sample_size=get_settings().import_error_sample_size,
        error_report=error_report,
    )
