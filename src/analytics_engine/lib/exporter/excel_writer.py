"""Excel (.xlsx) export renderer using openpyxl in write-only mode.

Write-only worksheets stream rows to disk, so sheet-level settings (frozen
panes, column widths) must be applied before the first row is appended.
Column widths are therefore sized from a bounded sample of leading rows.
"""

import itertools
import json
import re
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from analytics_engine.lib.exporter.base import (
    Artifact,
    ExportFormat,
    RenderSpec,
    header_labels,
    resolve_columns,
    write_artifact,
)

WIDTH_SAMPLE_ROWS = 100
MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 50

_HEADER_FONT = Font(bold=True)
_HEADER_FILL = PatternFill(start_color="FFE0E0E0", end_color="FFE0E0E0", fill_type="solid")
_HEADER_BORDER = Border(bottom=Side(style="thin"))
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


def _sheet_title(name: str) -> str:
    """Excel sheet titles are limited to 31 characters and exclude ``[]:*?/\\``."""
    return _INVALID_SHEET_CHARS.sub("_", name).strip()[:31] or "Export"


def _cell_value(value: Any) -> Any:
    """Convert a row value into something openpyxl can store."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        # Excel has no timezone support; store UTC wall time
        return value.astimezone(UTC).replace(tzinfo=None)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return value


def _column_widths(labels: list[str], columns: list[str], sample: list[dict[str, Any]]) -> list[float]:
    widths = []
    for label, column in zip(labels, columns, strict=True):
        longest = max((len(str(row.get(column) or "")) for row in sample), default=0)
        longest = max(longest, len(label))
        widths.append(min(max(longest + 2, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH))
    return widths


def write_excel(output_path: Path, rows: Iterable[dict[str, Any]], spec: RenderSpec) -> int:
    """Write rows to an .xlsx workbook.

    The header row is bold on a light grey fill with a thin bottom border,
    frozen, and covered by an autofilter spanning all data rows.

    Args:
        output_path: Path to write the workbook.
        rows: Iterable of row dicts.
        spec: Render spec (columns, header options, sheet name, title).

    Returns:
        Number of data rows written.
    """
    columns, iterator = resolve_columns(rows, spec.columns)
    labels = header_labels(columns, spec)

    wb = Workbook(write_only=True)
    wb.properties.creator = "analytics-engine"
    wb.properties.title = spec.title
    wb.properties.subject = "Data Export"
    wb.properties.keywords = "export, data, analytics"
    wb.properties.description = spec.description
    wb.properties.created = spec.generated_at.astimezone(UTC).replace(tzinfo=None)

    ws = wb.create_sheet(_sheet_title(spec.sheet_name))

    sample = list(itertools.islice(iterator, WIDTH_SAMPLE_ROWS))
    for index, width in enumerate(_column_widths(labels, columns, sample), start=1):
        ws.column_dimensions[get_column_letter(index)].width = width

    header_rows = 0
    if spec.include_headers and columns:
        ws.freeze_panes = "A2"
        header_cells = []
        for label in labels:
            cell = WriteOnlyCell(ws, value=label)
            cell.font = _HEADER_FONT
            cell.fill = _HEADER_FILL
            cell.border = _HEADER_BORDER
            header_cells.append(cell)
        ws.append(header_cells)
        header_rows = 1

    count = 0
    for row in itertools.chain(sample, iterator):
        ws.append([_cell_value(row.get(c)) for c in columns])
        count += 1

    if header_rows and columns:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(columns))}{count + header_rows}"

    wb.save(output_path)
    return count


class ExcelRenderer:
    """Renders rows as a styled single-sheet workbook."""

    format = ExportFormat.EXCEL

    def supports_format(self, output_format: str) -> bool:
        return output_format == self.format

    def render(self, rows: Iterable[dict[str, Any]], spec: RenderSpec, export_root: Path) -> Artifact:
        return write_artifact(export_root, spec, self.format, lambda path: write_excel(path, rows, spec))
