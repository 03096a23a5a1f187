"""XLSX style settings and sheet helpers shared by the template and merged-data writers."""

import io
import json
import re
from dataclasses import dataclass

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

MAX_SHEET_NAME_LENGTH = 31
DEFAULT_SHEET_NAME = "Hoja"

# "/ \ ? * [ ]" are rejected by spreadsheet applications; openpyxl also rejects ":".
_INVALID_SHEET_CHARS_RE = re.compile(r"[/\\?*\[\]:]")
_INVALID_FILENAME_CHARS_RE = re.compile(r'[\\/*?:"<>|]')


@dataclass(frozen=True)
class SheetStyle:
    header_font_color: str = "FFFFFF"
    header_fill_color: str = "0F1F39"
    border_style: str = "thin"
    column_width: int = 20
    note_font_color: str = "FF0000"
    note_font_size: int = 12
    help_header_fill_color: str = "FFFF00"
    help_name_width: int = 30
    help_comment_width: int = 150

    def header_font(self):
        return Font(bold=True, color=self.header_font_color)

    def header_fill(self):
        return PatternFill(
            start_color=self.header_fill_color,
            end_color=self.header_fill_color,
            fill_type="solid",
        )

    def border(self):
        side = Side(style=self.border_style)
        return Border(top=side, left=side, bottom=side, right=side)

    def header_alignment(self):
        return Alignment(horizontal="center", vertical="center")

    def note_font(self):
        return Font(size=self.note_font_size, color=self.note_font_color)


DEFAULT_STYLE = SheetStyle()


def style_header_row(ws, headers, style=DEFAULT_STYLE):
    """Write ``headers`` into row 1 with the bold white-on-dark-blue header style."""
    font = style.header_font()
    fill = style.header_fill()
    border = style.border()
    alignment = style.header_alignment()
    for col_idx, value in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col_idx, value=value)
        cell.font = font
        cell.fill = fill
        cell.border = border
        cell.alignment = alignment


def to_cell_value(value):
    """Flatten values openpyxl cannot store: lists become "a, b" and dicts become JSON text."""
    if isinstance(value, (list, tuple)):
        return ", ".join("" if item is None else str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


def set_column_widths(ws, count, style=DEFAULT_STYLE):
    for col_idx in range(1, count + 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = style.column_width


def sanitize_sheet_name(name):
    """Drop characters a sheet title may not contain and cut it to 31 characters."""
    cleaned = _INVALID_SHEET_CHARS_RE.sub("", name or "")[:MAX_SHEET_NAME_LENGTH]
    return cleaned or DEFAULT_SHEET_NAME


def should_add_worksheet(wb, name):
    """False when the workbook already holds a sheet called ``name`` (case-insensitive)."""
    lowered = name.lower()
    return all(existing.lower() != lowered for existing in wb.sheetnames)


def build_download_filename(file_name_hint, default="plantilla"):
    """Return "<hint>.xlsx" with characters invalid in file names removed."""
    stem = _INVALID_FILENAME_CHARS_RE.sub("", file_name_hint or "").strip()
    if stem.lower().endswith(".xlsx"):
        stem = stem[: -len(".xlsx")].strip()
    return f"{stem or default}.xlsx"


def new_workbook():
    """Workbook without openpyxl's default "Sheet", so every sheet name is ours."""
    wb = Workbook()
    wb.remove(wb.active)
    return wb


def save_workbook(wb):
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
