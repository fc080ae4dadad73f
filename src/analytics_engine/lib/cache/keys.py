"""Content-addressed cache keys and the JSON payload codec for cached rows."""

import datetime
import decimal
import hashlib
import json
import re
import uuid
from collections.abc import Mapping
from typing import Any

from analytics_engine.schemas.query import QueryDefinition

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase ``name`` and collapse anything outside ``[a-z0-9]`` to ``-``."""
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "query"


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime.datetime | datetime.date | datetime.time):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        return float(obj)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    msg = f"Object of type {type(obj).__name__} is not JSON serializable"
    raise TypeError(msg)


def canonical_json(value: Any) -> str:
    """Serialize ``value`` deterministically (sorted keys, compact separators)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_default)


def make_cache_key(prefix: str, definition: QueryDefinition, parameters: Mapping[str, Any]) -> str:
    """Build ``<prefix>:<name-slug>:<sha256>`` for a definition and its parameters.

    Provenance fields do not participate, so re-saving a definition does not
    orphan its cached results.
    """
    payload = canonical_json({"definition": definition.cache_payload(), "parameters": dict(parameters)})
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}:{slugify(definition.name)}:{digest}"


def query_pattern(prefix: str, name: str | None = None) -> str:
    """Glob matching every cached result, or only those of query ``name``."""
    if name is None:
        return f"{prefix}:*"
    return f"{prefix}:{slugify(name)}:*"


def encode_rows(rows: list[dict[str, Any]]) -> str:
    """Encode result rows for storage."""
    return json.dumps(rows, default=_default)


def decode_rows(payload: str) -> list[dict[str, Any]]:
    """Decode rows stored by ``encode_rows``."""
    return json.loads(payload)
