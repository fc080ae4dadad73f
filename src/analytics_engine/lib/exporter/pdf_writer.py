"""PDF export renderer using reportlab platypus."""

import itertools
from collections.abc import Iterable
from datetime import UTC, date, datetime
from decimal import Decimal
from functools import partial
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape, portrait
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import LongTable, Paragraph, SimpleDocTemplate, Spacer, TableStyle

from analytics_engine.lib.exporter.base import (
    Artifact,
    ExportFormat,
    RenderSpec,
    header_labels,
    resolve_columns,
    write_artifact,
)

EMPTY_MESSAGE = "No data available for this export."
# Rows per table flowable; keeps reportlab's layout pass bounded on big exports
TABLE_CHUNK_ROWS = 500

_TABLE_STYLE = TableStyle(
    [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E0E0E0")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("LINEBELOW", (0, 0), (-1, 0), 0.75, colors.black),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
    ]
)


class _NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output so every footer can show the page total."""

    def __init__(self, *args: Any, footer_text: str = "", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._saved_page_states: list[dict[str, Any]] = []
        self._footer_text = footer_text

    def showPage(self) -> None:  # noqa: N802
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        width, _ = self._pagesize
        self.saveState()
        self.setFont("Helvetica", 8)
        self.drawCentredString(width / 2, 0.4 * inch, f"Page {self.getPageNumber()} of {total}")
        if self._footer_text:
            self.drawString(0.5 * inch, 0.25 * inch, self._footer_text)
        self.restoreState()


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int | float | Decimal):
        return f"{value:,}"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def write_pdf(output_path: Path, rows: Iterable[dict[str, Any]], spec: RenderSpec) -> int:
    """Write rows to a paginated PDF table.

    The document carries a title, optional description, a table whose header
    row repeats on every page, "Page N of M" footers and document metadata.

    Args:
        output_path: Path to write the PDF.
        rows: Iterable of row dicts.
        spec: Render spec (title, description, orientation, columns).

    Returns:
        Number of data rows written.
    """
    pagesize = landscape(A4) if spec.orientation == "landscape" else portrait(A4)
    doc = SimpleDocTemplate(
        str(output_path),
        pagesize=pagesize,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.6 * inch,
        bottomMargin=0.75 * inch,
        title=spec.title,
        author="analytics-engine",
        subject=spec.description or "Data Export",
        creator="analytics-engine",
        keywords="export, data, analytics",
    )

    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle("Cell", parent=styles["Normal"], fontSize=7, leading=8)
    header_style = ParagraphStyle("HeaderCell", parent=cell_style, fontName="Helvetica-Bold")

    story: list[Any] = [Paragraph(escape(spec.title), styles["Title"])]
    if spec.description:
        story.append(Paragraph(escape(spec.description), styles["Normal"]))
    story.append(Spacer(1, 0.2 * inch))

    columns, iterator = resolve_columns(rows, spec.columns)
    col_width = doc.width / len(columns) if columns else doc.width
    labels = header_labels(columns, spec)

    count = 0
    while columns:
        chunk = list(itertools.islice(iterator, TABLE_CHUNK_ROWS))
        if not chunk:
            break
        data = [[Paragraph(escape(_format_value(row.get(c))), cell_style) for c in columns] for row in chunk]
        if spec.include_headers:
            data.insert(0, [Paragraph(escape(label), header_style) for label in labels])
        table = LongTable(data, colWidths=[col_width] * len(columns), repeatRows=1 if spec.include_headers else 0)
        table.setStyle(_TABLE_STYLE)
        story.append(table)
        count += len(chunk)

    if count == 0:
        story.append(Paragraph(EMPTY_MESSAGE, styles["Normal"]))

    exported_on = spec.generated_at.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
    doc.build(story, canvasmaker=partial(_NumberedCanvas, footer_text=f"Exported on: {exported_on}"))
    return count


class PdfRenderer:
    """Renders rows as a paginated PDF report."""

    format = ExportFormat.PDF

    def supports_format(self, output_format: str) -> bool:
        return output_format == self.format

    def render(self, rows: Iterable[dict[str, Any]], spec: RenderSpec, export_root: Path) -> Artifact:
        return write_artifact(export_root, spec, self.format, lambda path: write_pdf(path, rows, spec))
