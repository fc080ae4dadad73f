"""Tests for shared exporter types, file naming and format dispatch."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from analytics_engine.core.errors import RenderError, UnsupportedFormatError
from analytics_engine.lib.exporter import (
    SUPPORTED_FORMATS,
    CsvRenderer,
    ExcelRenderer,
    ExportFormat,
    JsonRenderer,
    PdfRenderer,
    RenderSpec,
    format_header,
    parse_format,
    renderer_for,
    sanitize_file_name,
)
from analytics_engine.lib.exporter.base import artifact_path, resolve_columns, write_artifact

GENERATED_AT = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


class TestSanitizeFileName:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("loads", "loads"),
            ("my report.csv", "my_report"),
            ("../../etc/passwd", "passwd"),
            ("..\\windows\\system.ini", "system"),
            ("...", "export"),
            ("", "export"),
            ("Q1: revenue/costs", "costs"),
        ],
    )
    def test_sanitize(self, raw: str, expected: str) -> None:
        assert sanitize_file_name(raw) == expected


class TestFormatHeader:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("loadId", "Load Id"),
            ("total_revenue", "Total Revenue"),
            ("status", "Status"),
            ("RPM", "RPM"),
        ],
    )
    def test_format_header(self, name: str, expected: str) -> None:
        assert format_header(name) == expected


class TestParseFormat:
    def test_supported_formats(self) -> None:
        assert SUPPORTED_FORMATS == ["csv", "excel", "pdf", "json"]

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("csv", ExportFormat.CSV), ("XLSX", ExportFormat.EXCEL), (" Excel ", ExportFormat.EXCEL)],
    )
    def test_parse(self, name: str, expected: ExportFormat) -> None:
        assert parse_format(name) is expected

    def test_unsupported(self) -> None:
        with pytest.raises(UnsupportedFormatError, match="docx"):
            parse_format("docx")

    @pytest.mark.parametrize(
        ("name", "renderer_type"),
        [("csv", CsvRenderer), ("excel", ExcelRenderer), ("pdf", PdfRenderer), (ExportFormat.JSON, JsonRenderer)],
    )
    def test_renderer_for(self, name: str, renderer_type: type) -> None:
        renderer = renderer_for(name)
        assert isinstance(renderer, renderer_type)
        assert renderer.supports_format(renderer.format)


class TestRenderSpec:
    def test_from_options_ignores_unknown_and_none(self) -> None:
        spec = RenderSpec.from_options(
            "loads",
            {"delimiter": ";", "sheet_name": None, "compression": "gzip"},
            title="Loads",
        )
        assert spec.delimiter == ";"
        assert spec.sheet_name == "Export"
        assert spec.title == "Loads"


class TestArtifactFiles:
    def test_artifact_path_is_date_partitioned(self, tmp_path: Path) -> None:
        spec = RenderSpec(file_name="monthly report", generated_at=GENERATED_AT)
        path = artifact_path(tmp_path, spec, ExportFormat.EXCEL)

        assert path == tmp_path / "2026-03-01" / "monthly_report.xlsx"
        assert path.parent.is_dir()

    def test_file_suffix_keeps_equal_names_apart(self, tmp_path: Path) -> None:
        first = RenderSpec(file_name="report", generated_at=GENERATED_AT, file_suffix="a1")
        second = RenderSpec(file_name="report", generated_at=GENERATED_AT, file_suffix="b2")

        assert artifact_path(tmp_path, first, ExportFormat.CSV).name == "report-a1.csv"
        assert artifact_path(tmp_path, first, ExportFormat.CSV) != artifact_path(tmp_path, second, ExportFormat.CSV)

    def test_write_artifact_publishes_atomically(self, tmp_path: Path) -> None:
        spec = RenderSpec(file_name="loads", generated_at=GENERATED_AT)

        def _write(path: Path) -> int:
            assert path.name == "loads.csv.part"
            path.write_text("a\n1\n")
            return 1

        artifact = write_artifact(tmp_path, spec, ExportFormat.CSV, _write)

        assert artifact.file_path == tmp_path / "2026-03-01" / "loads.csv"
        assert artifact.row_count == 1
        assert artifact.file_size_bytes == 4
        assert not artifact.file_path.with_name("loads.csv.part").exists()

    def test_write_failure_raises_render_error_and_cleans_up(self, tmp_path: Path) -> None:
        spec = RenderSpec(file_name="loads", generated_at=GENERATED_AT)

        def _write(path: Path) -> int:
            path.write_text("partial")
            raise OSError("disk full")

        with pytest.raises(RenderError, match="disk full"):
            write_artifact(tmp_path, spec, ExportFormat.CSV, _write)

        assert list((tmp_path / "2026-03-01").iterdir()) == []

    def test_other_errors_propagate_and_clean_up(self, tmp_path: Path) -> None:
        spec = RenderSpec(file_name="loads", generated_at=GENERATED_AT)

        def _write(path: Path) -> int:
            path.write_text("partial")
            raise KeyError("boom")

        with pytest.raises(KeyError):
            write_artifact(tmp_path, spec, ExportFormat.CSV, _write)

        assert list((tmp_path / "2026-03-01").iterdir()) == []


class TestResolveColumns:
    def test_explicit_columns(self) -> None:
        columns, rows = resolve_columns([{"a": 1, "b": 2}], ["b"])
        assert columns == ["b"]
        assert list(rows) == [{"a": 1, "b": 2}]

    def test_columns_from_first_row_without_losing_it(self) -> None:
        columns, rows = resolve_columns(iter([{"a": 1, "b": 2}, {"a": 3, "b": 4}]), None)
        assert columns == ["a", "b"]
        assert len(list(rows)) == 2

    def test_no_rows(self) -> None:
        columns, rows = resolve_columns([], None)
        assert columns == []
        assert list(rows) == []
