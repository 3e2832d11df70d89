import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from leadimport.db import Base


def _uuid() -> str:
    return uuid.uuid4().hex


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    upload_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, default=_uuid, index=True)
    status: Mapped[str] = mapped_column(String(20), default="queued")
    source: Mapped[str] = mapped_column(String(100), default="Bulk Upload")
    form_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    selected_sheets: Mapped[list | None] = mapped_column(JSON, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_processed: Mapped[int] = mapped_column(Integer, default=0)
    total_success: Mapped[int] = mapped_column(Integer, default=0)
    total_errors: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sheets_processed: Mapped[list | None] = mapped_column(JSON, nullable=True)
    error_details: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
