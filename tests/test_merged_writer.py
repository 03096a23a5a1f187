import io

import pytest
from openpyxl import load_workbook

from miro_sheets.merged_writer import add_records_sheet, add_validator_sheets, write_merged_workbook
from miro_sheets.models import Validator
from miro_sheets.style_constants import new_workbook


def _rows(ws):
    return [list(row) for row in ws.iter_rows(values_only=True)]


class TestWriteMergedWorkbook:
    def test_write_merged__header_and_rows_aligned(self):
        records = [{"A": 1, "B": 2}, {"A": 3, "B": 4}]
        xlsx_bytes, filename = write_merged_workbook("Resultados", records, "resultados")
        ws = load_workbook(io.BytesIO(xlsx_bytes))["Resultados"]

        assert _rows(ws) == [["A", "B"], [1, 2], [3, 4]]
        assert filename == "resultados.xlsx"

    def test_write_merged__header_styled_like_template(self):
        records = [{"Dependencia": "Rectoría", "Total": 12}]
        ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]

        header = ws["A1"]
        assert header.font.bold
        assert header.font.color.rgb.endswith("FFFFFF")
        assert header.fill.fgColor.rgb.endswith("0F1F39")
        assert header.border.right.style == "thin"
        assert header.alignment.horizontal == "center"
        assert ws.column_dimensions["A"].width == 20
        assert ws.column_dimensions["B"].width == 20

    def test_write_merged__no_validation_on_data_rows(self):
        records = [{"A": 1}]
        ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]
        assert ws.data_validations.dataValidation == []
        assert ws["A2"].border.top.style is None

    def test_write_merged__values_follow_header_order(self):
        records = [{"A": 1, "B": 2}, {"B": 4, "A": 3}]
        ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]
        assert _rows(ws)[2] == [3, 4]

    def test_write_merged__missing_key__blank_cell(self):
        records = [{"A": 1, "B": 2}, {"A": 3}]
        ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]
        assert _rows(ws)[2] == [3, None]

    def test_write_merged__extra_keys_ignored(self, caplog):
        records = [{"A": 1}, {"A": 2, "Z": 9}]
        with caplog.at_level("WARNING", logger="miro.merged_writer"):
            ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]
        assert _rows(ws) == [["A"], [1], [2]]
        assert "Z" in caplog.text

    def test_write_merged__empty_records__raises(self):
        with pytest.raises(ValueError):
            write_merged_workbook("R", [], "r")

    def test_write_merged__title_sanitized(self):
        records = [{"A": 1}]
        wb = load_workbook(io.BytesIO(write_merged_workbook("Reporte/2024*Q1", records, "r")[0]))
        assert wb.sheetnames == ["Reporte2024Q1"]

    def test_write_merged__validator_sheets(self):
        records = [{"Programa": "Física", "Inscritos": 40}]
        validators = [Validator(name="Programas [oficiales]", values=[{"Programa": "Física"}])]
        wb = load_workbook(io.BytesIO(write_merged_workbook("Resultados", records, "r", validators=validators)[0]))

        assert wb.sheetnames == ["Resultados", "Programas oficiales"]
        ref = wb["Programas oficiales"]
        assert _rows(ref) == [["Programa"], ["Física"]]
        assert ref["A2"].border.bottom.style == "thin"

    def test_write_merged__default_filename(self):
        _, filename = write_merged_workbook("R", [{"A": 1}], "")
        assert filename == "plantilla.xlsx"


class TestAddRecordsSheet:
    def test_add_records_sheet__existing_name__skipped(self):
        wb = new_workbook()
        assert add_records_sheet(wb, "X", [{"A": 1}]) is not None
        assert add_records_sheet(wb, "X", [{"B": 2}]) is None
        assert wb.sheetnames == ["X"]
        assert wb["X"]["A1"].value == "A"

    def test_add_records_sheet__bordered_data(self):
        wb = new_workbook()
        ws = add_records_sheet(wb, "X", [{"A": 1, "B": 2}], bordered=True)
        assert ws["B2"].border.left.style == "thin"

    def test_add_validator_sheets__returns_added_names(self):
        wb = new_workbook()
        validators = [
            Validator(name="Uno", values=[{"A": 1}]),
            Validator(name="uno", values=[{"A": 2}]),
            Validator(name="Dos", values=[]),
        ]
        assert add_validator_sheets(wb, validators) == ["Uno"]
        assert wb.sheetnames == ["Uno"]

    def test_add_records_sheet__list_and_dict_values__flattened(self):
        wb = new_workbook()
        records = [{"Periodo": ["2024-01-01", "2024-06-30"], "Detalle": {"sede": "Cali"}, "Total": 3}]
        ws = add_records_sheet(wb, "X", records)
        assert ws["A2"].value == "2024-01-01, 2024-06-30"
        assert ws["B2"].value == '{"sede": "Cali"}'
        assert ws["C2"].value == 3


class TestWriteMergedWorkbookArrays:
    def test_write_merged__range_values__written_as_text(self):
        records = [{"Periodo": ["2024-01-01", "2024-06-30"], "Total": 3}]
        ws = load_workbook(io.BytesIO(write_merged_workbook("R", records, "r")[0]))["R"]
        assert _rows(ws) == [["Periodo", "Total"], ["2024-01-01, 2024-06-30", 3]]
