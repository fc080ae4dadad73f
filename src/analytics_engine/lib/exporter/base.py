"""Shared types and file handling for export renderers.

Every renderer writes ``<export_root>/<yyyy-mm-dd>/<sanitized-name>[-<suffix>].<ext>``
through a ``.part`` temporary file that is renamed into place only once the
artifact is complete, so a partially written file is never visible under its
final name.
"""

import enum
import itertools
import os
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from analytics_engine.core.errors import RenderError


class ExportFormat(enum.StrEnum):
    """Closed set of artifact formats."""

    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"
    JSON = "json"


FILE_EXTENSIONS: dict[ExportFormat, str] = {
    ExportFormat.CSV: "csv",
    ExportFormat.EXCEL: "xlsx",
    ExportFormat.PDF: "pdf",
    ExportFormat.JSON: "json",
}

MIME_TYPES: dict[ExportFormat, str] = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.JSON: "application/json",
}


@dataclass
class RenderSpec:
    """What to render and how.

    Attributes:
        file_name: Requested base file name (sanitized before use).
        title: Document title (PDF heading, workbook title).
        description: Optional text under the PDF title.
        columns: Output columns; defaults to the keys of the first row.
        delimiter: CSV field delimiter.
        include_headers: Emit a header row.
        format_headers: Turn ``camelCase``/``snake_case`` keys into Title Case.
        sheet_name: Excel worksheet title.
        orientation: PDF page orientation, ``portrait`` or ``landscape``.
        generated_at: Timestamp used for the date directory and metadata.
        file_suffix: Appended to the sanitized name (e.g. a job id fragment)
            so equally named artifacts rendered on the same day stay distinct.
    """

    file_name: str
    title: str = "Data Export"
    description: str | None = None
    columns: list[str] | None = None
    delimiter: str = ","
    include_headers: bool = True
    format_headers: bool = True
    sheet_name: str = "Export"
    orientation: str = "portrait"
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    file_suffix: str | None = None

    @classmethod
    def from_options(cls, file_name: str, options: dict[str, Any], **kwargs: Any) -> "RenderSpec":
        """Build a spec from stored job options, ignoring unknown keys."""
        known = {k: v for k, v in options.items() if k in _OPTION_KEYS and v is not None}
        return cls(file_name=file_name, **known, **kwargs)


_OPTION_KEYS = frozenset({"columns", "delimiter", "include_headers", "format_headers", "sheet_name", "orientation"})


@dataclass
class Artifact:
    """A rendered file."""

    file_path: Path
    row_count: int
    file_size_bytes: int


class Renderer(Protocol):
    """Format-specific artifact producer.

    Renderers are synchronous; callers run them off the event loop.
    """

    format: ExportFormat

    def supports_format(self, output_format: str) -> bool: ...

    def render(self, rows: Iterable[dict[str, Any]], spec: RenderSpec, export_root: Path) -> Artifact: ...


_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_file_name(file_name: str) -> str:
    """Reduce a user supplied name to a safe single path component.

    Strips directories and any extension, collapses unsafe characters to
    ``_`` and falls back to ``export`` when nothing is left.
    """
    base = Path(file_name.replace("\\", "/")).name
    stem = base.rsplit(".", 1)[0] if "." in base.lstrip(".") else base
    cleaned = _UNSAFE_FILE_CHARS.sub("_", stem).strip("._")
    return cleaned[:150] or "export"


def artifact_path(export_root: Path, spec: RenderSpec, output_format: ExportFormat) -> Path:
    """Return the final artifact path, creating the date directory."""
    directory = Path(export_root) / spec.generated_at.strftime("%Y-%m-%d")
    directory.mkdir(parents=True, exist_ok=True)
    stem = sanitize_file_name(spec.file_name)
    if spec.file_suffix:
        stem = f"{stem}-{spec.file_suffix}"
    return directory / f"{stem}.{FILE_EXTENSIONS[output_format]}"


def write_artifact(
    export_root: Path,
    spec: RenderSpec,
    output_format: ExportFormat,
    write: Callable[[Path], int],
) -> Artifact:
    """Run ``write`` against a temporary path and publish the result atomically.

    Args:
        export_root: Root export directory.
        spec: Render spec (file name and generation date).
        output_format: Format being produced.
        write: Callable writing the artifact to the given path and returning
            the number of data rows written.

    Returns:
        The published artifact.

    Raises:
        RenderError: On any I/O failure.
    """
    try:
        final_path = artifact_path(export_root, spec, output_format)
    except OSError as e:
        msg = f"Cannot create export directory under {export_root}: {e}"
        raise RenderError(msg) from e

    part_path = final_path.with_name(final_path.name + ".part")
    try:
        row_count = write(part_path)
        os.replace(part_path, final_path)
        size = final_path.stat().st_size
    except OSError as e:
        part_path.unlink(missing_ok=True)
        msg = f"Failed to write {output_format} export {final_path.name}: {e}"
        raise RenderError(msg) from e
    except BaseException:
        part_path.unlink(missing_ok=True)
        raise

    logger.info("Rendered {} export {} ({} rows, {} bytes)", output_format, final_path, row_count, size)
    return Artifact(file_path=final_path, row_count=row_count, file_size_bytes=size)


def resolve_columns(
    rows: Iterable[dict[str, Any]],
    columns: list[str] | None,
) -> tuple[list[str], Iterator[dict[str, Any]]]:
    """Determine output columns without consuming the row stream.

    Returns:
        The column list (explicit, else the first row's keys, else empty) and
        an iterator over all rows including the peeked one.
    """
    iterator = iter(rows)
    if columns:
        return list(columns), iterator
    first = next(iterator, None)
    if first is None:
        return [], iter(())
    return list(first.keys()), itertools.chain([first], iterator)


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def format_header(name: str) -> str:
    """Turn ``loadId`` or ``total_revenue`` into ``Load Id`` / ``Total Revenue``."""
    words = _CAMEL_BOUNDARY.sub(" ", name).replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def header_labels(columns: list[str], spec: RenderSpec) -> list[str]:
    return [format_header(c) for c in columns] if spec.format_headers else list(columns)
