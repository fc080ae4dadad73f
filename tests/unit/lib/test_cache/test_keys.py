"""Tests for cache key derivation and the row payload codec."""

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from analytics_engine.lib.cache import decode_rows, encode_rows, make_cache_key, query_pattern, slugify
from analytics_engine.lib.cache.keys import canonical_json
from analytics_engine.schemas.query import QueryDefinition


def _definition(**overrides: object) -> QueryDefinition:
    data: dict[str, object] = {
        "name": "Loads by Status!",
        "collection": "loads",
        "fields": [{"field": "status"}],
    }
    data.update(overrides)
    return QueryDefinition.model_validate(data)


class TestSlugify:
    def test_collapses_non_alphanumerics(self) -> None:
        assert slugify("Loads by Status!") == "loads-by-status"

    def test_empty_falls_back(self) -> None:
        assert slugify("!!!") == "query"


class TestMakeCacheKey:
    def test_key_shape(self) -> None:
        key = make_cache_key("analytics", _definition(), {})
        prefix, slug, digest = key.split(":")
        assert (prefix, slug) == ("analytics", "loads-by-status")
        assert len(digest) == 64

    def test_parameter_order_does_not_matter(self) -> None:
        definition = _definition()
        assert make_cache_key("p", definition, {"a": 1, "b": 2}) == make_cache_key("p", definition, {"b": 2, "a": 1})

    def test_different_parameters_different_keys(self) -> None:
        definition = _definition()
        assert make_cache_key("p", definition, {"a": 1}) != make_cache_key("p", definition, {"a": 2})

    def test_provenance_does_not_participate(self) -> None:
        original = _definition()
        resaved = _definition(
            description="edited", created_by="ops", created_at=datetime(2026, 1, 1, tzinfo=UTC)
        )
        assert make_cache_key("p", original, {}) == make_cache_key("p", resaved, {})

    def test_definition_changes_change_the_key(self) -> None:
        assert make_cache_key("p", _definition(), {}) != make_cache_key("p", _definition(limit=10), {})


class TestQueryPattern:
    def test_all_entries(self) -> None:
        assert query_pattern("analytics") == "analytics:*"

    def test_single_query(self) -> None:
        assert query_pattern("analytics", "Loads by Status!") == "analytics:loads-by-status:*"


class TestRowCodec:
    def test_non_json_values_are_normalized(self) -> None:
        row_id = uuid.uuid4()
        rows = [{"id": row_id, "amount": Decimal("12.50"), "day": date(2026, 1, 2), "raw": b"ok"}]

        assert decode_rows(encode_rows(rows)) == [
            {"id": str(row_id), "amount": 12.5, "day": "2026-01-02", "raw": "ok"},
        ]

    def test_canonical_json_is_sorted_and_compact(self) -> None:
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
