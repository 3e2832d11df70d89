from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

FileKind = Literal["excel", "csv"]
JobStatus = Literal["queued", "processing", "completed", "failed"]
TemplateFormat = Literal["csv", "xlsx"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

T = TypeVar("T")


def coerce_int(value: Any) -> int | None:
    """Best-effort numeric coercion for worker stats; junk becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class ErrorDetail(CamelModel):
    sheet: str | None = None
    row: int | None = None
    error: str = ""

    @field_validator("row", mode="before")
    @classmethod
    def _row(cls, v: Any) -> int | None:
        return coerce_int(v)

    @field_validator("error", mode="before")
    @classmethod
    def _error(cls, v: Any) -> str:
        return "" if v is None else str(v)


class UploadAnalysis(CamelModel):
    """Structural summary returned by an inspection call."""

    model_config = ConfigDict(frozen=True)

    upload_token: str
    original_name: str | None = None
    size: int = 0
    file_kind: FileKind = Field(alias="fileType")
    sheet_names: list[str] = Field(default_factory=list)
    previews_by_sheet: dict[str, list[dict[str, Any]]] = Field(default_factory=dict, alias="previews")
    preview_available: bool = True
    preview_disabled_reason: str | None = None
    expires_in_ms: int | None = None

    @field_validator("sheet_names", mode="before")
    @classmethod
    def _sheet_names(cls, v: Any) -> list:
        return v if isinstance(v, list) else []

    @field_validator("previews_by_sheet", mode="before")
    @classmethod
    def _previews(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}


class ImportJobCreated(CamelModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    upload_id: str = ""
    batch_id: str = ""
    status: JobStatus = "queued"

    @field_validator("upload_id", "batch_id", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> str:
        return v or "queued"


class JobStats(CamelModel):
    total_processed: int | None = None
    total_success: int | None = None
    total_errors: int | None = None
    duration_ms: int | None = None
    sheets_processed: list[str] = Field(default_factory=list)

    @field_validator("total_processed", "total_success", "total_errors", "duration_ms", mode="before")
    @classmethod
    def _numbers(cls, v: Any) -> int | None:
        return coerce_int(v)

    @field_validator("sheets_processed", mode="before")
    @classmethod
    def _sheets(cls, v: Any) -> list:
        return [str(s) for s in v] if isinstance(v, list) else []


class JobStatusSnapshot(CamelModel):
    job_id: str | None = None
    upload_id: str | None = None
    status: JobStatus
    stats: JobStats | None = None
    message: str | None = None
    error_details: list[ErrorDetail] = Field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("stats", mode="before")
    @classmethod
    def _stats(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, JobStats)) else None

    @field_validator("error_details", mode="before")
    @classmethod
    def _errors(cls, v: Any) -> list:
        return v if isinstance(v, list) else []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class LegacyImportResult(CamelModel):
    """Direct-response shape from deployments that process the upload inline."""

    batch_id: str = ""
    total: int | None = None
    success: int | None = None
    errors: int | None = None
    duration_ms: int | None = None
    sheets_processed: list[str] = Field(default_factory=list)
    error_details: list[ErrorDetail] = Field(default_factory=list)
    message: str | None = None

    @field_validator("batch_id", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("total", "success", "errors", "duration_ms", mode="before")
    @classmethod
    def _numbers(cls, v: Any) -> int | None:
        return coerce_int(v)

    @field_validator("sheets_processed", "error_details", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list:
        return v if isinstance(v, list) else []


class ImportResult(CamelModel):
    model_config = ConfigDict(frozen=True)

    batch_id: str = ""
    total: int = 0
    success: int = 0
    errors: int = 0
    duration_ms: int = 0
    sheets_processed: tuple[str, ...] = ()
    error_details: tuple[ErrorDetail, ...] = ()
    message: str = ""


class FormField(BaseModel):
    field_name: str = Field(default="", validation_alias=AliasChoices("fieldName", "field_name"))
    display_order: int = Field(default=0, validation_alias=AliasChoices("displayOrder", "display_order"))

    @field_validator("field_name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("display_order", mode="before")
    @classmethod
    def _order(cls, v: Any) -> int:
        return coerce_int(v) or 0
