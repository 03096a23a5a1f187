"""Template schema to a data-entry XLSX with styled headers, notes and input validation."""

from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from miro_sheets.logger import get_logger
from miro_sheets.merged_writer import add_validator_sheets
from miro_sheets.style_constants import (
    DEFAULT_STYLE,
    build_download_filename,
    new_workbook,
    sanitize_sheet_name,
    save_workbook,
    set_column_widths,
    should_add_worksheet,
    style_header_row,
    to_cell_value,
)

logger = get_logger("template_writer")

MAX_VALIDATED_ROWS = 1000  # data rows below the header that carry a rule
HELP_SHEET_NAME = "Guía"
HELP_HEADERS = ["Campo", "Comentario del campo"]
DATE_FORMAT = "DD/MM/YYYY"

_UPPER_BOUND = "9999999999999999999999999999999"
_ERROR_TITLE = "Valor no válido"

_DATE_RULE = {
    "type": "date",
    "operator": "between",
    "formula1": "DATE(1900,1,1)",
    "formula2": "DATE(9999,12,31)",
    "error": "Por favor, introduce una fecha válida en el formato DD/MM/AAAA.",
    "number_format": DATE_FORMAT,
}

DATATYPE_RULES = {
    "Entero": {
        "type": "whole",
        "operator": "between",
        "formula1": "1",
        "formula2": _UPPER_BOUND,
        "error": "Por favor, introduce un número entero.",
    },
    "Decimal": {
        "type": "decimal",
        "operator": "between",
        "formula1": "0.0",
        "formula2": _UPPER_BOUND,
        "error": "Por favor, introduce un número decimal.",
    },
    "Porcentaje": {
        "type": "decimal",
        "operator": "between",
        "formula1": "0.0",
        "formula2": "100.0",
        "error": "Por favor, introduce un número decimal entre 0.0 y 100.0.",
    },
    "Texto Corto": {
        "type": "textLength",
        "operator": "lessThanOrEqual",
        "formula1": "60",
        "error": "Por favor, introduce un texto de hasta 60 caracteres.",
    },
    "Texto Largo": {
        "type": "textLength",
        "operator": "lessThanOrEqual",
        "formula1": "255",
        "error": "Por favor, introduce un texto de hasta 255 caracteres.",
    },
    "True/False": {
        "type": "list",
        "formula1": '"Si,No"',
        "allow_blank": True,
        "error": "Por favor, selecciona Si o No.",
    },
    "Fecha": _DATE_RULE,
    "Fecha Inicial / Fecha Final": _DATE_RULE,
    "Link": {
        "type": "textLength",
        "operator": "greaterThan",
        "formula1": "0",
        "error": "Por favor, introduce un enlace válido.",
    },
}


def normalize_comment(text):
    return text.replace("\r\n", "\n").replace("\r", "\n")


def build_validation(datatype):
    """Return a DataValidation for ``datatype``, or None when it has no rule."""
    rule = DATATYPE_RULES.get(datatype)
    if rule is None:
        return None
    return DataValidation(
        type=rule["type"],
        operator=rule.get("operator"),
        formula1=rule["formula1"],
        formula2=rule.get("formula2"),
        allow_blank=rule.get("allow_blank", False),
        showErrorMessage=True,
        errorTitle=_ERROR_TITLE,
        error=rule["error"],
    )


def _apply_field_validation(ws, field, col_idx):
    dv = build_validation(field.datatype)
    if dv is None:
        logger.debug("No validation rule for datatype %r (field %s)", field.datatype, field.name)
        return None

    letter = get_column_letter(col_idx)
    last_row = MAX_VALIDATED_ROWS + 1
    ws.add_data_validation(dv)
    dv.add(f"{letter}2:{letter}{last_row}")

    number_format = DATATYPE_RULES[field.datatype].get("number_format")
    if number_format:
        for row_idx in range(2, last_row + 1):
            ws.cell(row=row_idx, column=col_idx).number_format = number_format
    return dv


def _prefill_rows(ws, fields, filled_data):
    """Write previously uploaded column-oriented values below the header."""
    if not filled_data:
        return 0
    by_name = {item.field_name: item.values for item in filled_data}
    num_rows = len(filled_data[0].values)
    for i in range(num_rows):
        for col_idx, field in enumerate(fields, start=1):
            column_values = by_name.get(field.name)
            if column_values is None or i >= len(column_values):
                continue
            ws.cell(row=i + 2, column=col_idx, value=to_cell_value(column_values[i]))
    return num_rows


def add_template_sheet(wb, title, fields, style=DEFAULT_STYLE, filled_data=None):
    """Add the data-entry sheet for ``fields``.

    Each field comment becomes a note on its header cell. openpyxl writes
    notes as plain text, so the red 12pt rendering of the same text lives on
    the "Guía" sheet built by ``add_help_sheet``.

    Returns:
        Worksheet|None: None when a sheet with the same name already exists
    """
    name = sanitize_sheet_name(title)
    if not should_add_worksheet(wb, name):
        logger.info("Sheet already exists, skipped: %s", name)
        return None

    ws = wb.create_sheet(title=name)
    style_header_row(ws, [field.name for field in fields], style)

    for col_idx, field in enumerate(fields, start=1):
        if field.comment:
            note = Comment(normalize_comment(field.comment), "MIRÓ")
            ws.cell(row=1, column=col_idx).comment = note
        _apply_field_validation(ws, field, col_idx)

    set_column_widths(ws, len(fields), style)
    prefilled = _prefill_rows(ws, fields, filled_data)
    logger.info("Template sheet built: %s (%d fields, %d prefilled rows)", name, len(fields), prefilled)
    return ws


def add_help_sheet(wb, fields, style=DEFAULT_STYLE):
    """Add the "Guía" sheet that lists every field next to its comment."""
    if not should_add_worksheet(wb, HELP_SHEET_NAME):
        return None

    ws = wb.create_sheet(title=HELP_SHEET_NAME)
    ws.column_dimensions["A"].width = style.help_name_width
    ws.column_dimensions["B"].width = style.help_comment_width

    help_fill = PatternFill(
        start_color=style.help_header_fill_color,
        end_color=style.help_header_fill_color,
        fill_type="solid",
    )
    for col_idx, value in enumerate(HELP_HEADERS, start=1):
        cell = ws.cell(row=1, column=col_idx, value=value)
        cell.font = Font(bold=True)
        cell.fill = help_fill

    note_font = style.note_font()
    wrap = Alignment(wrap_text=True)
    for row_idx, field in enumerate(fields, start=2):
        ws.cell(row=row_idx, column=1, value=field.name)
        comment_text = normalize_comment(field.comment) if field.comment else None
        comment_cell = ws.cell(row=row_idx, column=2, value=comment_text)
        comment_cell.alignment = wrap
        if comment_text:
            comment_cell.font = note_font
    return ws


def write_template_workbook(title, fields, file_name_hint, validators=(), filled_data=None,
                            include_help=True, style=DEFAULT_STYLE):
    """Build the downloadable template workbook.

    Returns:
        tuple: (xlsx bytes, suggested filename)
    """
    wb = new_workbook()
    add_template_sheet(wb, title, fields, style=style, filled_data=filled_data)
    if include_help:
        add_help_sheet(wb, fields, style=style)
    add_validator_sheets(wb, validators, style=style)

    filename = build_download_filename(file_name_hint)
    logger.info("Template workbook built: %s (sheets=%s)", filename, wb.sheetnames)
    return save_workbook(wb), filename


def write_template_from_schema(schema, filled_data=None, include_help=True, style=DEFAULT_STYLE):
    return write_template_workbook(
        schema.name,
        schema.fields,
        schema.file_name,
        validators=schema.validators,
        filled_data=filled_data,
        include_help=include_help,
        style=style,
    )
