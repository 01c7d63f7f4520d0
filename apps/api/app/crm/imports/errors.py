from __future__ import annotations

from fastapi import status


class ImportPipelineError(Exception):
    """Base error for failures that abort an import before a report exists."""

    code = "IMPORT_FAILED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, *, field: str = "file") -> None:
        self.message = message
        self.field = field
        super().__init__(message)

    def to_details(self) -> list[dict[str, str]]:
        return [{"field": self.field, "message": self.message, "code": self.code}]


class UnknownEntityType(ImportPipelineError):
    code = "INVALID_ENTITY"

    def __init__(self, entity_type: str, supported: list[str]) -> None:
        self.entity_type = entity_type
        super().__init__(f"Entity must be one of: {', '.join(supported)}", field="entity")


class MalformedInput(ImportPipelineError):
    code = "INVALID_CSV"


class EmptyInput(ImportPipelineError):
    code = "EMPTY_CSV"

    def __init__(self) -> None:
        super().__init__("No data rows found in CSV")


class FileTooLarge(ImportPipelineError):
    code = "FILE_TOO_LARGE"
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
