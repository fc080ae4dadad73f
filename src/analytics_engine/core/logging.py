"""Loguru logging for the engine, its workers and the CLI.

Records go to stderr in a pipe-separated text format unless they are bound
with ``json_output=True``, in which case they are serialized as JSON lines.
Every record carries a ``component`` extra (``engine`` unless rebound, e.g.
``logger.bind(component="worker")``).
"""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FILE_NAME = "analytics-engine.log"

_TEXT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[component]} | {name}:{function}:{line} | {message}"
)


def _wants_json(record: dict[str, Any]) -> bool:
    return bool(record["extra"].get("json_output", False))


def _wants_text(record: dict[str, Any]) -> bool:
    return not _wants_json(record)


def setup_logging(log_level: str = "INFO", log_dir: str | None = None) -> None:
    """Replace all Loguru handlers with the engine's sinks.

    Args:
        log_level: Minimum level, case-insensitive.
        log_dir: When set, every record is also written to
            ``<log_dir>/analytics-engine.log`` (rotated daily, kept 7 days).
    """
    level = log_level.upper()
    handlers: list[dict[str, Any]] = [
        {"sink": sys.stderr, "level": level, "format": _TEXT_FORMAT, "filter": _wants_text},
        {"sink": sys.stderr, "level": level, "serialize": True, "filter": _wants_json},
    ]
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            {
                "sink": log_path / LOG_FILE_NAME,
                "level": level,
                "format": _TEXT_FORMAT,
                "rotation": "24h",
                "retention": "7 days",
            }
        )
    logger.configure(handlers=handlers, extra={"component": "engine"})
