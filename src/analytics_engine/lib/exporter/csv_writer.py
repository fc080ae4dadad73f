"""CSV export renderer."""

import csv
import io
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from analytics_engine.lib.exporter.base import (
    Artifact,
    ExportFormat,
    RenderSpec,
    header_labels,
    resolve_columns,
    write_artifact,
)

# Characters that trigger formula execution in spreadsheet applications
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_cell(value: object) -> object:
    """Sanitize a cell value to prevent CSV formula injection.

    Prefixes values starting with formula-triggering characters with
    a single quote to prevent execution in spreadsheet applications.
    Numbers are left alone so negative values stay numeric.

    Args:
        value: The cell value to sanitize.

    Returns:
        The sanitized value.
    """
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def encode_csv_row(values: Iterable[object], delimiter: str = ",") -> str:
    """Encode one row as a CSV line (including the line terminator)."""
    buffer = io.StringIO()
    csv.writer(buffer, delimiter=delimiter).writerow([_sanitize_cell(v) for v in values])
    return buffer.getvalue()


def iter_csv_chunks(
    rows: Iterable[dict[str, Any]],
    spec: RenderSpec,
    *,
    rows_per_chunk: int = 500,
) -> Iterator[str]:
    """Yield CSV text in chunks of ``rows_per_chunk`` rows, header first."""
    columns, iterator = resolve_columns(rows, spec.columns)
    if spec.include_headers and columns:
        yield encode_csv_row(header_labels(columns, spec), spec.delimiter)

    chunk: list[str] = []
    for row in iterator:
        chunk.append(encode_csv_row((row.get(c) for c in columns), spec.delimiter))
        if len(chunk) >= rows_per_chunk:
            yield "".join(chunk)
            chunk.clear()
    if chunk:
        yield "".join(chunk)


def write_csv(
    output_path: Path,
    rows: Iterable[dict[str, Any]],
    spec: RenderSpec,
) -> int:
    """Write rows to a CSV file.

    Args:
        output_path: Path to write the CSV file.
        rows: Iterable of row dicts.
        spec: Render spec (columns, delimiter, header options).

    Returns:
        Number of rows written.
    """
    columns, iterator = resolve_columns(rows, spec.columns)
    count = 0

    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, delimiter=spec.delimiter)
        if spec.include_headers and columns:
            writer.writerow(header_labels(columns, spec))

        for row in iterator:
            writer.writerow([_sanitize_cell(row.get(c)) for c in columns])
            count += 1

    return count


class CsvRenderer:
    """Renders rows as delimited text."""

    format = ExportFormat.CSV

    def supports_format(self, output_format: str) -> bool:
        return output_format == self.format

    def render(self, rows: Iterable[dict[str, Any]], spec: RenderSpec, export_root: Path) -> Artifact:
        return write_artifact(export_root, spec, self.format, lambda path: write_csv(path, rows, spec))
