from leadimport.schemas.bulk_upload import (
    ImportJobCreated,
    ImportResult,
    JobStats,
    JobStatusSnapshot,
    LegacyImportResult,
)


def summary_message(total: int, success: int, errors: int) -> str:
    return f"Processed {total} row(s). {success} succeeded, {errors} failed"


def build_import_result(snapshot: JobStatusSnapshot, job: ImportJobCreated | None = None) -> ImportResult:
    """Turn a terminal job snapshot into the display record.

    Workers that stop early can send partial stats, so every absent field
    falls back to zero or empty.
    """
    stats = snapshot.stats or JobStats()
    total = stats.total_processed or 0
    success = stats.total_success or 0
    errors = stats.total_errors or 0
    return ImportResult(
        batch_id=job.batch_id if job else "",
        total=total,
        success=success,
        errors=errors,
        duration_ms=stats.duration_ms or 0,
        sheets_processed=tuple(stats.sheets_processed or ()),
        error_details=tuple(snapshot.error_details or ()),
        message=snapshot.message or summary_message(total, success, errors),
    )


def legacy_import_result(response: LegacyImportResult) -> ImportResult:
    total = response.total or 0
    success = response.success or 0
    errors = response.errors or 0
    return ImportResult(
        batch_id=response.batch_id,
        total=total,
        success=success,
        errors=errors,
        duration_ms=response.duration_ms or 0,
        sheets_processed=tuple(response.sheets_processed),
        error_details=tuple(response.error_details),
        message=response.message or summary_message(total, success, errors),
    )
