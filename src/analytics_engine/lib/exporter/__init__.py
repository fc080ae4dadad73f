"""Exporter library: format-specific renderers and format dispatch.

``ExportFormat`` is a closed set; ``renderer_for`` maps each member to its
renderer and is the only dispatch point.
"""

from analytics_engine.core.errors import UnsupportedFormatError
from analytics_engine.lib.exporter.base import (
    FILE_EXTENSIONS,
    MIME_TYPES,
    Artifact,
    ExportFormat,
    Renderer,
    RenderSpec,
    format_header,
    sanitize_file_name,
)
from analytics_engine.lib.exporter.csv_writer import CsvRenderer, encode_csv_row, iter_csv_chunks, write_csv
from analytics_engine.lib.exporter.excel_writer import ExcelRenderer, write_excel
from analytics_engine.lib.exporter.json_writer import JsonRenderer, write_json
from analytics_engine.lib.exporter.pdf_writer import PdfRenderer, write_pdf

SUPPORTED_FORMATS = [fmt.value for fmt in ExportFormat]


def parse_format(output_format: str) -> ExportFormat:
    """Resolve a format name (``xlsx`` is accepted for Excel).

    Raises:
        UnsupportedFormatError: If the name is not a supported format.
    """
    key = output_format.strip().lower()
    if key == "xlsx":
        key = ExportFormat.EXCEL.value
    try:
        return ExportFormat(key)
    except ValueError:
        raise UnsupportedFormatError(output_format) from None


def renderer_for(output_format: ExportFormat | str) -> Renderer:
    """Return the renderer for a format.

    Raises:
        UnsupportedFormatError: If the format is not supported.
    """
    fmt = output_format if isinstance(output_format, ExportFormat) else parse_format(output_format)
    match fmt:
        case ExportFormat.CSV:
            return CsvRenderer()
        case ExportFormat.EXCEL:
            return ExcelRenderer()
        case ExportFormat.PDF:
            return PdfRenderer()
        case ExportFormat.JSON:
            return JsonRenderer()
    raise UnsupportedFormatError(str(output_format))


__all__ = [
    "FILE_EXTENSIONS",
    "MIME_TYPES",
    "SUPPORTED_FORMATS",
    "Artifact",
    "CsvRenderer",
    "ExcelRenderer",
    "ExportFormat",
    "JsonRenderer",
    "PdfRenderer",
    "RenderSpec",
    "Renderer",
    "encode_csv_row",
    "format_header",
    "iter_csv_chunks",
    "parse_format",
    "renderer_for",
    "sanitize_file_name",
    "write_csv",
    "write_excel",
    "write_json",
    "write_pdf",
]
