"""Uploaded workbook to column-oriented data with coarse type inference."""

import datetime
import io
import json
import math
import re

from openpyxl import load_workbook

from miro_sheets.logger import get_logger
from miro_sheets.models import NUMBER_TYPE, TEXT_TYPE, Column, KeptCell, SkippedCell

logger = get_logger("reader")

DEFAULT_COLUMN_NAME = "Columna {index}"
FILLED_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")

# Plain ASCII decimals only; float() would also take "1_000", "nan" or non-ASCII digits.
_DECIMAL_RE = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)", re.ASCII)
_LEADING_DECIMAL_RE = re.compile(r"\s*([+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?)", re.ASCII)


def is_numeric_value(value):
    """True for numbers and for strings holding a finite decimal number."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        text = value.strip()
        if not _DECIMAL_RE.fullmatch(text):
            return False
        return math.isfinite(float(text))
    return False


def infer_column_type(values):
    if values and all(is_numeric_value(v) for v in values):
        return NUMBER_TYPE
    return TEXT_TYPE


def classify_cell(cell, row):
    """Return KeptCell for string/number cells and SkippedCell for everything else."""
    value = cell.value
    if value is None:
        return SkippedCell(row=row, reason="empty")
    if cell.data_type == "f":
        return SkippedCell(row=row, reason="formula")
    if cell.data_type == "e":
        return SkippedCell(row=row, reason="error")
    if isinstance(value, bool):
        return SkippedCell(row=row, reason="boolean")
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time, datetime.timedelta)):
        return SkippedCell(row=row, reason="date")
    if isinstance(value, (str, int, float)):
        return KeptCell(row=row, value=value)
    return SkippedCell(row=row, reason="unsupported")


def _column_name(header, index):
    if isinstance(header, str) and header:
        return header
    return DEFAULT_COLUMN_NAME.format(index=index)


def _is_blank_sheet(ws):
    # openpyxl reports 1x1 dimensions for a sheet with no cells at all.
    return ws.max_row == 1 and ws.max_column == 1 and ws.cell(row=1, column=1).value is None


def read_worksheet(ws):
    """Build one Column per sheet column; row 1 is the header."""
    if _is_blank_sheet(ws):
        logger.info("Empty sheet: %s", ws.title)
        return []

    max_row = ws.max_row
    max_col = ws.max_column
    columns = []
    for col_idx in range(1, max_col + 1):
        header = ws.cell(row=1, column=col_idx).value
        cells = []
        values = []
        for row_idx in range(2, max_row + 1):
            entry = classify_cell(ws.cell(row=row_idx, column=col_idx), row_idx)
            cells.append(entry)
            if entry.kind == "kept":
                values.append(entry.value)
            else:
                logger.debug("Skipped cell col=%d row=%d (%s)", col_idx, row_idx, entry.reason)

        columns.append(Column(
            name=_column_name(header, col_idx),
            is_validator=False,
            type=infer_column_type(values),
            values=values,
            cells=cells,
        ))

    return columns


def read_workbook(data):
    """Parse xlsx bytes and return the columns of the first worksheet.

    Codec errors (corrupt bytes, legacy .xls) propagate to the caller.
    """
    wb = load_workbook(io.BytesIO(data))
    try:
        ws = wb.worksheets[0]
        columns = read_worksheet(ws)
    finally:
        wb.close()

    ragged = sum(1 for c in columns if c.is_ragged)
    logger.info("Workbook read: sheet=%s, columns=%d, ragged=%d", ws.title, len(columns), ragged)
    return columns


# ── Filled template upload ───────────────────────────────────
def _to_int(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else value


def _to_float(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_DECIMAL_RE.match(str(value))
    if not match:
        return value
    number = float(match.group(1))
    return number if math.isfinite(number) else value


def _to_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    for fmt in FILLED_DATE_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return value


def _to_bool(value):
    return value is True or str(value).strip().lower() == "si"


def _to_text(value):
    return str(value)


def _to_date_range(value):
    try:
        parsed = json.loads(value) if isinstance(value, str) else None
    except json.JSONDecodeError:
        return value
    if isinstance(parsed, list) and len(parsed) == 2:
        return parsed
    return value


FILLED_CONVERTERS = {
    "Entero": _to_int,
    "Decimal": _to_float,
    "Porcentaje": _to_float,
    "Fecha": _to_date,
    "True/False": _to_bool,
    "Texto Corto": _to_text,
    "Texto Largo": _to_text,
    "Fecha Inicial / Fecha Final": _to_date_range,
}


def convert_filled_cell(cell, field):
    """Convert one filled-template cell to the Python value of ``field.datatype``.

    Values that do not parse are returned unchanged. An empty cell is None,
    or [] for a ``multiple`` field.
    """
    if field.datatype == "Link" and cell.hyperlink is not None and cell.hyperlink.target:
        return cell.hyperlink.target

    value = cell.value
    if field.multiple:
        raw = "" if value is None else str(value).strip()
        return [part.strip() for part in raw.split(",") if part.strip()]

    if value is None:
        return None
    converter = FILLED_CONVERTERS.get(field.datatype)
    if converter is None:
        return value
    return converter(value)


def read_filled_template(data, fields):
    """Parse a producer's filled template into one record per data row.

    Header cells are matched to ``fields`` by name; columns with no matching
    field are ignored. Rows with no value in any matched column are dropped,
    so the pre-formatted but empty rows of a downloaded template do not count.
    """
    by_name = {field.name: field for field in fields}
    wb = load_workbook(io.BytesIO(data))
    try:
        ws = wb.worksheets[0]
        matched = []
        for col_idx in range(1, ws.max_column + 1):
            header = ws.cell(row=1, column=col_idx).value
            field = by_name.get(str(header).strip()) if header is not None else None
            if field is None:
                if header is not None:
                    logger.debug("Column without field ignored: %s", header)
                continue
            matched.append((col_idx, field))

        records = []
        for row_idx in range(2, ws.max_row + 1):
            cells = [(ws.cell(row=row_idx, column=col_idx), field) for col_idx, field in matched]
            if all(cell.value is None for cell, _ in cells):
                continue
            records.append({field.name: convert_filled_cell(cell, field) for cell, field in cells})
    finally:
        wb.close()

    logger.info("Filled template read: sheet=%s, fields=%d, records=%d", ws.title, len(matched), len(records))
    return records
