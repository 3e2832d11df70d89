"""
Out-of-band processing of queued import jobs.

Row handling here is the reference behaviour: a sheet without a name or
phone column is treated as a summary sheet and skipped, every data row needs
a name and a phone, and a phone already stored (or seen earlier in the same
file) is rejected as a duplicate. Columns that do not map onto a lead
attribute are kept in ``dynamic_fields``.
"""

import logging
import re
import time
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadimport.config import settings
from leadimport.db import async_session
from leadimport.models.import_job import ImportJob
from leadimport.models.lead import Lead
from leadimport.schemas.bulk_upload import JobStats, JobStatusSnapshot
from leadimport.services.results import summary_message
from leadimport.services.spreadsheet import SheetRows, SpreadsheetError, read_sheets
from leadimport.services.upload_store import upload_store

logger = logging.getLogger(__name__)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "studentname", "fullname", "candidatename"),
    "phone": ("phone", "phonenumber", "mobile", "mobilenumber", "contactnumber", "studentphone"),
    "email": ("email", "emailid", "emailaddress"),
    "father_name": ("fathername", "parentname"),
    "father_phone": ("fatherphone", "fathermobile", "parentphone"),
    "gender": ("gender",),
    "village": ("village", "town"),
    "mandal": ("mandal",),
    "district": ("district",),
    "state": ("state",),
    "course_interested": ("courseinterested", "course"),
}

_ALIAS_LOOKUP = {alias: attr for attr, aliases in FIELD_ALIASES.items() for alias in aliases}


def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header).lower())


def map_headers(headers: list[str]) -> dict[str, str]:
    """Sheet header -> Lead attribute, first matching column wins."""
    mapping: dict[str, str] = {}
    for header in headers:
        attr = _ALIAS_LOOKUP.get(normalize_header(header))
        if attr and attr not in mapping.values():
            mapping[header] = attr
    return mapping


def is_student_sheet(mapping: dict[str, str]) -> bool:
    return "name" in mapping.values() or "phone" in mapping.values()


def normalize_phone(value: Any) -> str:
    digits = re.sub(r"\D", "", str(value or ""))
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    return digits


def _text(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


async def _import_row(
    db: AsyncSession,
    job: ImportJob,
    mapping: dict[str, str],
    values: dict[str, Any],
    seen_phones: set[str],
) -> str | None:
    """Insert one lead; returns the row's error message, or None on success."""
    record = {attr: values.get(header) for header, attr in mapping.items()}
    name = _text(record.get("name"))
    phone = normalize_phone(record.get("phone"))
    missing = [label for label, value in (("name", name), ("phone", phone)) if not value]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    if phone in seen_phones:
        return f"Duplicate phone number {phone} (repeated in this file)"
    existing = await db.scalar(select(Lead.id).where(Lead.phone == phone))
    if existing is not None:
        return f"Duplicate phone number {phone} (already exists)"
    seen_phones.add(phone)

    extras = {header: v for header, v in values.items() if header not in mapping and v != ""}
    db.add(
        Lead(
            name=name,
            phone=phone,
            email=_text(record.get("email")),
            father_name=_text(record.get("father_name")),
            father_phone=normalize_phone(record.get("father_phone")) or None,
            gender=_text(record.get("gender")),
            village=_text(record.get("village")),
            mandal=_text(record.get("mandal")),
            district=_text(record.get("district")),
            state=_text(record.get("state")),
            course_interested=_text(record.get("course_interested")),
            source=job.source,
            upload_batch_id=job.batch_id,
            form_id=job.form_id,
            dynamic_fields=extras or None,
        )
    )
    return None


class _Tally:
    def __init__(self, cap: int):
        self.cap = cap
        self.processed = 0
        self.success = 0
        self.errors = 0
        self.details: list[dict[str, Any]] = []
        self.sheets: list[str] = []

    def record_error(self, sheet: str, row: int, error: str) -> None:
        self.errors += 1
        if len(self.details) < self.cap:
            self.details.append({"sheet": sheet, "row": row, "error": error})


async def _import_sheet(db: AsyncSession, job: ImportJob, sheet: SheetRows, tally: _Tally, seen: set[str]) -> None:
    mapping = map_headers(sheet.headers)
    if not is_student_sheet(mapping):
        logger.info(f"Import job {job.id}: skipping sheet '{sheet.name}' (no student columns)")
        return

    processed = success = 0
    pending_errors: list[tuple[int, str]] = []
    for row_number, values in sheet.rows:
        processed += 1
        error = await _import_row(db, job, mapping, values, seen)
        if error:
            pending_errors.append((row_number, error))
        else:
            success += 1
    await db.commit()

    # counted only once the sheet's rows are committed
    tally.processed += processed
    tally.success += success
    for row_number, error in pending_errors:
        tally.record_error(sheet.name, row_number, error)
    tally.sheets.append(sheet.name)

    job.total_processed = tally.processed
    job.total_success = tally.success
    job.total_errors = tally.errors
    job.sheets_processed = list(tally.sheets)
    job.message = f"Processed worksheet '{sheet.name}' ({processed} row(s))"
    await db.commit()


async def process_import_job(job_id: str) -> None:
    started = time.monotonic()
    async with async_session() as db:
        job = await db.get(ImportJob, job_id)
        if job is None:
            logger.error(f"Import job {job_id} not found")
            return
        job.status = "processing"
        job.started_at = datetime.now()
        job.message = "Processing upload"
        await db.commit()

        tally = _Tally(settings.ERROR_DETAILS_CAP)
        failure: str | None = None
        try:
            staged = upload_store.get(job.upload_id)
            if staged is None:
                raise SpreadsheetError("The uploaded file has expired. Please upload it again.")
            content = upload_store.read(staged)
            seen: set[str] = set()
            for sheet in read_sheets(content, job.file_kind, only=job.selected_sheets):
                await _import_sheet(db, job, sheet, tally, seen)
        except Exception as e:
            logger.exception(f"Import job {job_id} failed")
            await db.rollback()
            failure = str(e) or "Import failed"
            job = await db.get(ImportJob, job_id)

        job.total_processed = tally.processed
        job.total_success = tally.success
        job.total_errors = tally.errors
        job.sheets_processed = list(tally.sheets)
        job.error_details = list(tally.details)
        job.duration_ms = int((time.monotonic() - started) * 1000)
        job.completed_at = datetime.now()
        if failure is None:
            job.status = "completed"
            job.message = summary_message(tally.processed, tally.success, tally.errors)
        else:
            job.status = "failed"
            job.message = failure
        await db.commit()
        logger.info(f"Import job {job_id} {job.status}: {job.message}")


def job_snapshot(job: ImportJob) -> JobStatusSnapshot:
    stats = None
    if job.status != "queued":
        stats = JobStats(
            total_processed=job.total_processed,
            total_success=job.total_success,
            total_errors=job.total_errors,
            duration_ms=job.duration_ms,
            sheets_processed=job.sheets_processed or [],
        )
    return JobStatusSnapshot(
        job_id=job.id,
        upload_id=job.upload_id,
        status=job.status,
        stats=stats,
        message=job.message,
        error_details=job.error_details or [],
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )
