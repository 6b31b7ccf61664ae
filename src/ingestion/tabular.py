"""Tabular file ingestion — uploaded CSV / Excel files to Row lists.

openpyxl for Excel (first sheet only) and the stdlib csv module for CSV.
The first row is the header. Headers are whitespace-trimmed, columns with
a blank header are dropped, empty cells become "" and blank rows are
skipped. Everything else about the values is left to the matcher.
"""

import csv
import io
import logging
from datetime import date, datetime, time
from enum import StrEnum

import openpyxl

from src.models.dataset import Row, Scalar

logger = logging.getLogger(__name__)


class TabularFormat(StrEnum):
    CSV = "csv"
    XLSX = "xlsx"


_EXCEL_MIMES = frozenset({
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})


def detect_format(filename: str = "", content_type: str = "") -> TabularFormat:
    """Infer the file format from its extension, then its MIME type.

    Raises ValueError for anything that is neither CSV nor Excel.
    """
    name = filename.lower()
    if name.endswith(".csv"):
        return TabularFormat.CSV
    if name.endswith((".xlsx", ".xlsm")):
        return TabularFormat.XLSX
    mime = content_type.lower()
    if "csv" in mime:
        return TabularFormat.CSV
    if mime in _EXCEL_MIMES:
        return TabularFormat.XLSX
    raise ValueError(
        f"Unsupported file type: {filename or content_type or 'unknown'}. "
        "Upload a CSV or XLSX file."
    )


def _cell(value: object) -> Scalar:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _is_blank(row: Row) -> bool:
    return all(value == "" or value is None for value in row.values())


def _build_rows(header: list[str], records: list[list[Scalar]]) -> list[Row]:
    columns = [(i, name) for i, name in enumerate(header) if name]
    rows: list[Row] = []
    for record in records:
        row: Row = {
            name: record[i] if i < len(record) else ""
            for i, name in columns
        }
        if not _is_blank(row):
            rows.append(row)
    return rows


def read_csv(content: bytes) -> list[Row]:
    """Parse UTF-8 CSV content (a leading BOM is ignored)."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValueError(f"CSV file is not valid UTF-8: {exc}") from exc

    reader = csv.reader(io.StringIO(text))
    lines = list(reader)
    if not lines:
        return []
    header = [name.strip() for name in lines[0]]
    rows = _build_rows(header, [list(line) for line in lines[1:]])
    logger.info("Parsed CSV: %d rows, %d columns", len(rows), len([h for h in header if h]))
    return rows


def read_excel(content: bytes) -> list[Row]:
    """Parse the first worksheet of an Excel workbook."""
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise ValueError(f"Could not read Excel file: {exc}") from exc

    try:
        ws = wb[wb.sheetnames[0]]
        values = [[_cell(v) for v in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()

    if not values:
        return []
    header = [str(name).strip() for name in values[0]]
    rows = _build_rows(header, values[1:])
    logger.info("Parsed Excel: %d rows, %d columns", len(rows), len([h for h in header if h]))
    return rows


def read_table(content: bytes, *, filename: str = "", content_type: str = "") -> list[Row]:
    """Parse an uploaded tabular file into rows."""
    if detect_format(filename, content_type) == TabularFormat.CSV:
        return read_csv(content)
    return read_excel(content)
