import csv
import io

from openpyxl import Workbook

from leadimport.schemas.bulk_upload import FormField

DEFAULT_TEMPLATE_COLUMNS = [
    "hallTicketNumber", "name", "phone", "email", "fatherName", "fatherPhone", "motherName",
    "gender", "village", "district", "courseInterested", "interCollege", "rank", "mandal",
    "state", "quota", "applicationStatus",
]

DEFAULT_SAMPLE_ROW: dict[str, str | int] = {
    "hallTicketNumber": "HT123456",
    "name": "John Doe",
    "phone": "9876543210",
    "email": "john@example.com",
    "fatherName": "Father Name",
    "fatherPhone": "9876543211",
    "motherName": "Mother Name",
    "gender": "Male",
    "village": "Village Name",
    "district": "District Name",
    "courseInterested": "Engineering",
    "interCollege": "ABC Junior College",
    "rank": 125,
    "mandal": "Mandal Name",
    "state": "State Name",
    "quota": "Not Applicable",
    "applicationStatus": "Qualified",
}

TEMPLATE_SHEET_TITLE = "Leads"


def template_layout(fields: list[FormField] | None = None) -> tuple[list[str], list]:
    """Header row and sample row; a form's own fields replace the defaults."""
    headers = [f.field_name for f in sorted(fields or [], key=lambda f: f.display_order) if f.field_name]
    if headers:
        return headers, [""] * len(headers)
    return list(DEFAULT_TEMPLATE_COLUMNS), [DEFAULT_SAMPLE_ROW[c] for c in DEFAULT_TEMPLATE_COLUMNS]


def build_csv_template(fields: list[FormField] | None = None) -> str:
    headers, sample = template_layout(fields)
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(headers)
    writer.writerow(sample)
    return output.getvalue()


def build_xlsx_template(fields: list[FormField] | None = None) -> bytes:
    headers, sample = template_layout(fields)
    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET_TITLE
    ws.append(headers)
    if any(v != "" for v in sample):
        ws.append(sample)
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()
