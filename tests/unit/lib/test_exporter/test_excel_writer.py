"""Tests for the Excel renderer."""

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

from openpyxl import load_workbook

from analytics_engine.lib.exporter import ExcelRenderer, RenderSpec, write_excel

ROWS = [
    {"loadId": 1, "customer": "Acme", "total_revenue": 100.5},
    {"loadId": 2, "customer": "Globex Corporation International", "total_revenue": 200},
    {"loadId": 3, "customer": "Initech", "total_revenue": None},
]


class TestWriteExcel:
    def test_header_styling_freeze_and_filter(self, tmp_path: Path) -> None:
        output = tmp_path / "out.xlsx"
        count = write_excel(output, ROWS, RenderSpec(file_name="out", sheet_name="Loads", title="Loads"))

        assert count == 3
        wb = load_workbook(output)
        ws = wb["Loads"]
        assert [c.value for c in ws[1]] == ["Load Id", "Customer", "Total Revenue"]
        assert ws["A1"].font.b
        assert ws["A1"].fill.fgColor.rgb == "FFE0E0E0"
        assert ws["A1"].border.bottom.style == "thin"
        assert ws.freeze_panes == "A2"
        assert ws.auto_filter.ref == "A1:C4"
        assert ws["B3"].value == "Globex Corporation International"
        assert ws["C4"].value is None
        assert wb.properties.title == "Loads"
        assert wb.properties.creator == "analytics-engine"

    def test_column_widths_are_clamped(self, tmp_path: Path) -> None:
        output = tmp_path / "out.xlsx"
        rows = [{"id": 1, "text": "x" * 200}]
        write_excel(output, rows, RenderSpec(file_name="out", format_headers=False))

        ws = load_workbook(output).active
        assert ws.column_dimensions["A"].width == 10
        assert ws.column_dimensions["B"].width == 50

    def test_timezone_aware_datetimes_stored_as_utc(self, tmp_path: Path) -> None:
        output = tmp_path / "out.xlsx"
        eastern = timezone(timedelta(hours=-5))
        write_excel(output, [{"at": datetime(2026, 1, 2, 8, 0, tzinfo=eastern)}], RenderSpec(file_name="out"))

        ws = load_workbook(output).active
        assert ws["A2"].value == datetime(2026, 1, 2, 13, 0)

    def test_invalid_sheet_name_is_sanitized(self, tmp_path: Path) -> None:
        output = tmp_path / "out.xlsx"
        write_excel(output, ROWS, RenderSpec(file_name="out", sheet_name="Q1/Q2 [draft]: revenue by customer"))

        assert load_workbook(output).sheetnames == ["Q1_Q2 _draft__ revenue by custo"]

    def test_empty_input(self, tmp_path: Path) -> None:
        output = tmp_path / "out.xlsx"
        assert write_excel(output, [], RenderSpec(file_name="out")) == 0

        ws = load_workbook(output).active
        assert ws.max_row <= 1
        assert ws["A1"].value is None


class TestExcelRenderer:
    def test_render(self, tmp_path: Path) -> None:
        spec = RenderSpec(file_name="loads", generated_at=datetime(2026, 3, 1, tzinfo=UTC))
        artifact = ExcelRenderer().render(ROWS, spec, tmp_path)

        assert artifact.file_path.name == "loads.xlsx"
        assert artifact.row_count == 3
        assert artifact.file_path.read_bytes()[:2] == b"PK"
