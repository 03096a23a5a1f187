"""Flat, already-validated records to a styled read-only XLSX."""


from miro_sheets.logger import get_logger
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

logger = get_logger("merged_writer")


def add_records_sheet(wb, title, records, style=DEFAULT_STYLE, bordered=False):
    """Add a sheet with one header row (keys of the first record) and one row per record.

    Args:
        wb: workbook being built
        title: sheet title, sanitised before use
        records: non-empty list of dicts sharing the same keys
        bordered: draw the thin border around data cells (validator reference sheets)

    Returns:
        Worksheet|None: None when a sheet with the same name already exists
    """
    if not records:
        raise ValueError("records must not be empty")

    name = sanitize_sheet_name(title)
    if not should_add_worksheet(wb, name):
        logger.info("Sheet already exists, skipped: %s", name)
        return None

    headers = list(records[0].keys())
    ws = wb.create_sheet(title=name)
    style_header_row(ws, headers, style)

    header_set = set(headers)
    border = style.border()
    for row_idx, record in enumerate(records, start=2):
        extra = set(record.keys()) - header_set
        if extra:
            logger.warning("Row %d has keys outside the header, ignored: %s", row_idx, sorted(extra))
        for col_idx, key in enumerate(headers, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=to_cell_value(record.get(key)))
            if bordered:
                cell.border = border

    set_column_widths(ws, len(headers), style)
    return ws


def add_validator_sheets(wb, validators, style=DEFAULT_STYLE):
    """Append one bordered reference sheet per validator that has values."""
    added = []
    for validator in validators:
        if not validator.values:
            logger.warning("Validator without values, skipped: %s", validator.name)
            continue
        ws = add_records_sheet(wb, validator.name, validator.values, style=style, bordered=True)
        if ws is not None:
            added.append(ws.title)
    return added


def write_merged_workbook(title, records, file_name_hint, validators=(), style=DEFAULT_STYLE):
    """Build the merged-results workbook.

    Returns:
        tuple: (xlsx bytes, suggested filename)
    """
    wb = new_workbook()
    add_records_sheet(wb, title, records, style=style)
    validator_sheets = add_validator_sheets(wb, validators, style=style)

    filename = build_download_filename(file_name_hint)
    logger.info("Merged workbook built: %s (%d rows, %d validator sheets)",
                filename, len(records), len(validator_sheets))
    return save_workbook(wb), filename
