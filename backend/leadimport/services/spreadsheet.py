import csv
import io
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from leadimport.config import settings
from leadimport.schemas.bulk_upload import FileKind, UploadAnalysis
from leadimport.services.upload_store import StagedUpload

CSV_SHEET_NAME = "CSV"
XLSX_SIGNATURE = b"PK\x03\x04"
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0"


class SpreadsheetError(ValueError):
    pass


@dataclass
class SheetRows:
    name: str
    headers: list[str] = field(default_factory=list)
    # (1-based spreadsheet row number, {header: value})
    rows: list[tuple[int, dict[str, Any]]] = field(default_factory=list)


def detect_file_kind(filename: str, content: bytes) -> FileKind:
    name = (filename or "").lower()
    if content.startswith(OLE_SIGNATURE) or name.endswith(".xls"):
        raise SpreadsheetError("Legacy .xls workbooks are not supported. Save the file as .xlsx and try again.")
    if content.startswith(XLSX_SIGNATURE) or name.endswith((".xlsx", ".xlsm")):
        return "excel"
    return "csv"


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _is_blank(values) -> bool:
    return all(_cell(v) == "" for v in values)


def _collect(name: str, raw_rows, limit: int | None) -> SheetRows:
    sheet = SheetRows(name=name)
    for row_number, values in enumerate(raw_rows, start=1):
        if _is_blank(values):
            continue
        if not sheet.headers:
            sheet.headers = [str(_cell(v)) for v in values]
            continue
        record = {
            header: _cell(values[i]) if i < len(values) else ""
            for i, header in enumerate(sheet.headers)
            if header
        }
        sheet.rows.append((row_number, record))
        if limit is not None and len(sheet.rows) >= limit:
            break
    return sheet


def _decode_csv(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("cp1252", errors="replace")


def _open_workbook(content: bytes):
    try:
        return load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError) as e:
        raise SpreadsheetError(f"Could not read the workbook: {e}") from e


def list_sheet_names(content: bytes, file_kind: FileKind) -> list[str]:
    if file_kind == "csv":
        return [CSV_SHEET_NAME]
    wb = _open_workbook(content)
    try:
        return list(wb.sheetnames)
    finally:
        wb.close()


def read_sheets(
    content: bytes,
    file_kind: FileKind,
    only: list[str] | None = None,
    limit: int | None = None,
) -> list[SheetRows]:
    """Header-keyed rows per sheet; the first non-blank row is the header."""
    if file_kind == "csv":
        reader = csv.reader(io.StringIO(_decode_csv(content)))
        return [_collect(CSV_SHEET_NAME, reader, limit)]

    wb = _open_workbook(content)
    try:
        sheets = []
        for ws in wb.worksheets:
            if only is not None and ws.title not in only:
                continue
            sheets.append(_collect(ws.title, ws.iter_rows(values_only=True), limit))
        return sheets
    finally:
        wb.close()


def analyze_upload(staged: StagedUpload, content: bytes) -> UploadAnalysis:
    sheet_names = list_sheet_names(content, staged.file_kind) if staged.file_kind == "excel" else []
    previews: dict[str, list[dict[str, Any]]] = {}
    reason = None
    if staged.size > settings.PREVIEW_MAX_FILE_BYTES:
        reason = (
            f"Preview disabled for large files ({staged.size / (1024 * 1024):.1f} MB). "
            "All selected worksheets will still be imported."
        )
    else:
        for sheet in read_sheets(content, staged.file_kind, limit=settings.INSPECT_PREVIEW_ROWS):
            previews[sheet.name] = [record for _, record in sheet.rows]

    return UploadAnalysis(
        upload_token=staged.token,
        original_name=staged.original_name,
        size=staged.size,
        file_kind=staged.file_kind,
        sheet_names=sheet_names,
        previews_by_sheet=previews,
        preview_available=reason is None,
        preview_disabled_reason=reason,
        expires_in_ms=staged.expires_in_ms,
    )
