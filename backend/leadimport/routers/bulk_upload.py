"""
Bulk lead upload router.

Endpoints:
- POST /leads/bulk-upload/inspect   - stage a spreadsheet, return sheets and previews
- POST /leads/bulk-upload           - queue an import job for a staged (or raw) file
- GET  /leads/import-jobs/{job_id}  - current status of an import job
- GET  /leads/bulk-upload/template  - empty lead template (csv / xlsx)
"""

import io
import json

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from leadimport.config import settings
from leadimport.db import get_db
from leadimport.models.import_job import ImportJob
from leadimport.schemas.bulk_upload import (
    ApiResponse,
    ImportJobCreated,
    JobStatusSnapshot,
    TemplateFormat,
    UploadAnalysis,
)
from leadimport.services.import_worker import job_snapshot, process_import_job
from leadimport.services.spreadsheet import (
    SpreadsheetError,
    analyze_upload,
    detect_file_kind,
    list_sheet_names,
)
from leadimport.services.templates import build_csv_template, build_xlsx_template
from leadimport.services.upload_store import StagedUpload, upload_store

router = APIRouter(prefix="/leads", tags=["bulk-upload"])


async def _stage_file(file: UploadFile) -> tuple[StagedUpload, bytes]:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    filename = file.filename or "upload"
    try:
        file_kind = detect_file_kind(filename, content)
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return upload_store.save(filename, content, file_kind), content


def _parse_selected_sheets(raw: str | None) -> list[str] | None:
    if raw is None or raw == "":
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="selectedSheets must be a JSON array of sheet names")
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise HTTPException(status_code=400, detail="selectedSheets must be a JSON array of sheet names")
    return value


@router.post("/bulk-upload/inspect", response_model=ApiResponse[UploadAnalysis])
async def inspect_bulk_upload(file: UploadFile = File(...)):
    staged, content = await _stage_file(file)
    try:
        analysis = analyze_upload(staged, content)
    except SpreadsheetError as e:
        upload_store.delete(staged.token)
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse[UploadAnalysis](data=analysis)


@router.post("/bulk-upload", response_model=ApiResponse[ImportJobCreated], status_code=202)
async def create_bulk_upload(
    background_tasks: BackgroundTasks,
    file: UploadFile | None = File(default=None),
    upload_token: str | None = Form(default=None, alias="uploadToken"),
    source: str = Form(default=settings.DEFAULT_SOURCE),
    form_id: str | None = Form(default=None, alias="formId"),
    selected_sheets: str | None = Form(default=None, alias="selectedSheets"),
    db: AsyncSession = Depends(get_db),
):
    if upload_token:
        staged = upload_store.get(upload_token)
        if staged is None:
            raise HTTPException(status_code=404, detail="Upload token expired or not found. Please select the file again.")
        content = upload_store.read(staged)
    elif file is not None:
        staged, content = await _stage_file(file)
    else:
        raise HTTPException(status_code=400, detail="Provide an uploadToken or a file")

    sheets = _parse_selected_sheets(selected_sheets)
    if staged.file_kind == "excel" and sheets is not None:
        if not sheets:
            raise HTTPException(status_code=400, detail="Select at least one worksheet to include in the upload.")
        try:
            available = list_sheet_names(content, "excel")
        except SpreadsheetError as e:
            raise HTTPException(status_code=400, detail=str(e))
        unknown = [s for s in sheets if s not in available]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown worksheet(s): {', '.join(unknown)}")

    job = ImportJob(
        upload_id=staged.token,
        status="queued",
        source=source.strip() or settings.DEFAULT_SOURCE,
        form_id=form_id or None,
        file_kind=staged.file_kind,
        original_name=staged.original_name,
        selected_sheets=sheets if staged.file_kind == "excel" else None,
        message="Queued for processing",
    )
    db.add(job)
    # the worker opens its own session, so the row must be visible first
    await db.commit()
    background_tasks.add_task(process_import_job, job.id)

    return ApiResponse[ImportJobCreated](
        data=ImportJobCreated(job_id=job.id, upload_id=job.upload_id, batch_id=job.batch_id, status="queued"),
        message="Import queued",
    )


@router.get("/import-jobs/{job_id}", response_model=ApiResponse[JobStatusSnapshot])
async def get_import_job_status(job_id: str, db: AsyncSession = Depends(get_db)):
    job = await db.get(ImportJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return ApiResponse[JobStatusSnapshot](data=job_snapshot(job))


@router.get("/bulk-upload/template")
async def download_template(format: TemplateFormat = Query(default="csv")):
    if format == "xlsx":
        return StreamingResponse(
            io.BytesIO(build_xlsx_template()),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": "attachment; filename=lead_template.xlsx"},
        )
    return StreamingResponse(
        io.BytesIO(build_csv_template().encode("utf-8-sig")),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=lead_template.csv"},
    )
