from dataclasses import dataclass, field
from typing import Any

from leadimport.config import settings
from leadimport.schemas.bulk_upload import UploadAnalysis

NO_SHEET_SELECTED = "Select at least one worksheet to include in the upload."


@dataclass(frozen=True)
class PreviewRow:
    sheet_name: str
    values: dict[str, Any] = field(default_factory=dict)


class SheetSelector:
    """Worksheet selection and the preview derived from it.

    Built fresh for every analysis, so selections never leak between files.
    Excel previews only show selected sheets; a CSV has one implicit sheet
    and always previews in full.
    """

    def __init__(self, analysis: UploadAnalysis, preview_limit: int | None = None):
        self.analysis = analysis
        self.preview_limit = preview_limit or settings.PREVIEW_ROW_LIMIT
        self._selected: set[str] = set(analysis.sheet_names)

    @property
    def is_excel(self) -> bool:
        return self.analysis.file_kind == "excel"

    @property
    def sheet_names(self) -> list[str]:
        return list(self.analysis.sheet_names)

    @property
    def selected(self) -> list[str]:
        # workbook order, not the order sheets were ticked in
        return [name for name in self.analysis.sheet_names if name in self._selected]

    def is_selected(self, sheet_name: str) -> bool:
        return sheet_name in self._selected

    def toggle(self, sheet_name: str) -> bool:
        if sheet_name not in self.analysis.sheet_names:
            raise ValueError(f"Unknown worksheet: {sheet_name}")
        if sheet_name in self._selected:
            self._selected.discard(sheet_name)
        else:
            self._selected.add(sheet_name)
        return sheet_name in self._selected

    def select_all(self) -> None:
        self._selected = set(self.analysis.sheet_names)

    def clear_all(self) -> None:
        self._selected.clear()

    @property
    def validation_message(self) -> str | None:
        if self.is_excel and not self._selected:
            return NO_SHEET_SELECTED
        return None

    @property
    def is_ready(self) -> bool:
        return self.validation_message is None

    @property
    def preview_rows(self) -> list[PreviewRow]:
        if not self.analysis.preview_available:
            return []
        previews = self.analysis.previews_by_sheet
        sheets = self.selected if self.is_excel else list(previews)
        rows: list[PreviewRow] = []
        for sheet in sheets:
            for row in previews.get(sheet) or []:
                if len(rows) >= self.preview_limit:
                    return rows
                rows.append(PreviewRow(sheet_name=sheet, values=dict(row)))
        return rows

    @property
    def preview_columns(self) -> list[str]:
        """Union of the previewed rows' keys, first row's order first."""
        columns: dict[str, None] = {}
        for row in self.preview_rows:
            for key in row.values:
                columns.setdefault(key, None)
        return list(columns)
