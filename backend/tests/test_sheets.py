import pytest

from leadimport.schemas.bulk_upload import UploadAnalysis
from leadimport.services.sheets import NO_SHEET_SELECTED, SheetSelector


def _rows(prefix: str, n: int, **extra) -> list[dict]:
    return [{"Student Name": f"{prefix}-{i}", "Phone": f"90000{i:05d}", **extra} for i in range(n)]


def _excel(previews: dict[str, list[dict]], **kwargs) -> UploadAnalysis:
    return UploadAnalysis(
        upload_token="tok",
        file_kind="excel",
        sheet_names=list(previews),
        previews_by_sheet=previews,
        **kwargs,
    )


def test_all_sheets_selected_after_analysis():
    selector = SheetSelector(_excel({"Summary": [], "Sheet1": _rows("a", 2), "Sheet2": _rows("b", 2)}))
    assert selector.selected == ["Summary", "Sheet1", "Sheet2"]
    assert selector.is_ready


def test_toggle_and_clear_block_excel_submission():
    selector = SheetSelector(_excel({"Summary": [], "Sheet1": _rows("a", 2)}))

    assert selector.toggle("Summary") is False
    assert selector.selected == ["Sheet1"]
    assert selector.is_ready

    selector.clear_all()
    assert selector.selected == []
    assert selector.validation_message == NO_SHEET_SELECTED
    assert not selector.is_ready

    assert selector.toggle("Sheet1") is True
    assert selector.is_ready

    selector.select_all()
    assert selector.selected == ["Summary", "Sheet1"]


def test_toggle_unknown_sheet_raises():
    selector = SheetSelector(_excel({"Sheet1": []}))
    with pytest.raises(ValueError):
        selector.toggle("Nope")


def test_csv_never_blocked_by_selection():
    analysis = UploadAnalysis(
        upload_token="tok",
        file_kind="csv",
        previews_by_sheet={"CSV": _rows("c", 3)},
    )
    selector = SheetSelector(analysis)
    selector.clear_all()
    assert selector.validation_message is None
    assert len(selector.preview_rows) == 3
    assert all(row.sheet_name == "CSV" for row in selector.preview_rows)


def test_preview_limited_to_selected_sheets_and_ten_rows():
    selector = SheetSelector(_excel({"Summary": [{"Mandal": "X", "Count": 4}], "Sheet1": _rows("a", 6), "Sheet2": _rows("b", 6)}))
    selector.toggle("Summary")

    rows = selector.preview_rows
    assert len(rows) == 10
    assert [r.sheet_name for r in rows] == ["Sheet1"] * 6 + ["Sheet2"] * 4
    assert rows[0].values["Student Name"] == "a-0"

    selector.toggle("Sheet1")
    assert {r.sheet_name for r in selector.preview_rows} == {"Sheet2"}


def test_preview_columns_union_in_first_seen_order():
    selector = SheetSelector(_excel({
        "Sheet1": [{"Student Name": "A", "Phone": "1"}],
        "Sheet2": [{"Phone": "2", "Village": "V", "Student Name": "B"}],
    }))
    assert selector.preview_columns == ["Student Name", "Phone", "Village"]

    selector.toggle("Sheet1")
    assert selector.preview_columns == ["Phone", "Village", "Student Name"]


def test_no_preview_when_disabled():
    selector = SheetSelector(_excel(
        {"Sheet1": _rows("a", 3)},
        preview_available=False,
        preview_disabled_reason="too large",
    ))
    assert selector.preview_rows == []
    assert selector.preview_columns == []
    assert selector.is_ready


def test_selection_keeps_workbook_order_regardless_of_clicks():
    selector = SheetSelector(_excel({"Sheet1": _rows("a", 2), "Sheet2": _rows("b", 2), "Sheet3": _rows("c", 2)}))
    selector.clear_all()

    selector.toggle("Sheet3")
    selector.toggle("Sheet1")

    assert selector.selected == ["Sheet1", "Sheet3"]
    assert selector.is_selected("Sheet3")
    assert not selector.is_selected("Sheet2")
    assert [r.sheet_name for r in selector.preview_rows] == ["Sheet1", "Sheet1", "Sheet3", "Sheet3"]
