"""JSON export renderer."""

import json
import uuid
from collections.abc import Iterable
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any

from analytics_engine.lib.exporter.base import Artifact, ExportFormat, RenderSpec, write_artifact


class _RowEncoder(json.JSONEncoder):
    """Encodes warehouse values: UUIDs and temporals as strings, decimals as floats."""

    def default(self, o: object) -> Any:
        if isinstance(o, uuid.UUID):
            return str(o)
        if isinstance(o, datetime | date | time):
            return o.isoformat()
        if isinstance(o, Decimal):
            return float(o)
        return super().default(o)


def write_json(
    output_path: Path,
    rows: Iterable[dict[str, Any]],
    columns: list[str] | None = None,
) -> int:
    """Write rows to ``output_path`` as a JSON array, one object per line.

    Rows are encoded one at a time, so the iterable is never materialized.

    Returns:
        Number of rows written.
    """
    encoder = _RowEncoder(ensure_ascii=False)
    count = 0
    with output_path.open("w", encoding="utf-8") as f:
        f.write("[")
        for row in rows:
            f.write(",\n  " if count else "\n  ")
            f.writelines(encoder.iterencode({c: row.get(c) for c in columns} if columns else row))
            count += 1
        f.write("\n]\n")
    return count


class JsonRenderer:
    """Renders rows as a JSON array of objects."""

    format = ExportFormat.JSON

    def supports_format(self, output_format: str) -> bool:
        return output_format == self.format

    def render(self, rows: Iterable[dict[str, Any]], spec: RenderSpec, export_root: Path) -> Artifact:
        return write_artifact(export_root, spec, self.format, lambda path: write_json(path, rows, spec.columns))
