"""Unit tests for the query, export and cache CLI commands."""

import json
import re
import sys
import uuid
from collections.abc import Iterator
from pathlib import Path

import pytest
import typer
from loguru import logger
from typer.testing import CliRunner

from analytics_engine.cli.app import app
from analytics_engine.cli.common import parse_params
from analytics_engine.schemas.query import QueryDefinition

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logger() -> Iterator[None]:
    # The app callback binds sinks to the runner's temporary streams.
    yield
    logger.remove()
    logger.add(sys.stderr)


def _json_output(output: str) -> object:
    start = min(i for i in (output.find("{"), output.find("[")) if i != -1)
    return json.loads(output[start:])


def _create_query(tmp_path: Path, definition: QueryDefinition) -> str:
    definition_file = tmp_path / "loads.json"
    definition_file.write_text(definition.model_dump_json(), encoding="utf-8")
    result = runner.invoke(app, ["query", "create", str(definition_file)])
    assert result.exit_code == 0, result.output
    match = re.search(r"Query created: (\S+)", result.output)
    assert match is not None
    return match.group(1)


class TestParseParams:
    def test_values_parse_as_json_when_possible(self) -> None:
        assert parse_params(["limit=5", "status=DELIVERED", "ids=[1, 2]", "flag=true"]) == {
            "limit": 5,
            "status": "DELIVERED",
            "ids": [1, 2],
            "flag": True,
        }

    def test_empty(self) -> None:
        assert parse_params(None) == {}

    @pytest.mark.parametrize("item", ["status", "=DELIVERED"])
    def test_malformed_entries_rejected(self, item: str) -> None:
        with pytest.raises(typer.BadParameter):
            parse_params([item])


class TestQueryCommands:
    def test_create_list_show(self, cli_env: Path, loads_definition: QueryDefinition) -> None:
        query_id = _create_query(cli_env, loads_definition)

        listed = runner.invoke(app, ["query", "list", "--type", "operational"])
        assert listed.exit_code == 0
        assert "1 saved queries (page 1 of 1)" in listed.output
        assert "Delivered Loads" in listed.output

        shown = runner.invoke(app, ["query", "show", query_id])
        assert shown.exit_code == 0
        body = _json_output(shown.output)
        assert body["id"] == query_id
        assert body["collection"] == "loads"

    def test_create_rejects_invalid_definition(self, cli_env: Path) -> None:
        definition_file = cli_env / "bad.json"
        definition_file.write_text(json.dumps({"name": "Empty", "collection": "loads", "fields": []}))

        result = runner.invoke(app, ["query", "create", str(definition_file)])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_list_unknown_type(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["query", "list", "--type", "weekly"])
        assert result.exit_code == 2

    def test_run_with_params_and_pages(self, cli_env: Path, loads_definition: QueryDefinition) -> None:
        query_id = _create_query(cli_env, loads_definition)

        all_rows = runner.invoke(app, ["query", "run", query_id])
        assert all_rows.exit_code == 0, all_rows.output
        assert len(_json_output(all_rows.output)) == 15

        cancelled = runner.invoke(app, ["query", "run", query_id, "-p", "status=CANCELLED"])
        assert [row["loadId"] for row in _json_output(cancelled.output)] == [19, 20]

        paged = runner.invoke(app, ["query", "run", query_id, "--page", "2", "--page-size", "5"])
        body = _json_output(paged.output)
        assert body["total"] == 15
        assert body["page_count"] == 3
        assert [row["loadId"] for row in body["data"]] == [6, 7, 8, 9, 10]

    def test_run_missing_query(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["query", "run", str(uuid.uuid4())])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_preview_prints_sql(self, cli_env: Path, loads_definition: QueryDefinition) -> None:
        query_id = _create_query(cli_env, loads_definition)

        result = runner.invoke(app, ["query", "preview", query_id])

        assert result.exit_code == 0
        assert "SELECT" in result.output
        assert "FROM loads" in result.output

    def test_delete(self, cli_env: Path, loads_definition: QueryDefinition) -> None:
        query_id = _create_query(cli_env, loads_definition)

        deleted = runner.invoke(app, ["query", "delete", query_id])
        assert deleted.exit_code == 0
        assert f"Query deleted: {query_id}" in deleted.output

        again = runner.invoke(app, ["query", "delete", query_id])
        assert again.exit_code == 1
        assert "Query not found" in again.output


class TestExportCommands:
    def test_run_status_list(self, cli_env: Path, loads_definition: QueryDefinition) -> None:
        query_id = _create_query(cli_env, loads_definition)

        result = runner.invoke(
            app, ["export", "run", "--query-id", query_id, "--format", "csv", "--file-name", "delivered"]
        )
        assert result.exit_code == 0, result.output
        assert "Export completed:" in result.output
        assert "Rows:       15" in result.output
        job_id = re.search(r"Export job created: (\S+)", result.output).group(1)

        status = runner.invoke(app, ["export", "status", job_id])
        assert status.exit_code == 0
        body = _json_output(status.output)
        assert body["status"] == "completed"
        assert body["row_count"] == 15

        listed = runner.invoke(app, ["export", "list", "--status", "completed"])
        body = _json_output(listed.output)
        assert body["pagination"]["total"] == 1
        assert body["items"][0]["id"] == job_id

        files = list((cli_env / "cli-exports").rglob("delivered-*.csv"))
        assert len(files) == 1

    def test_run_requires_a_source(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["export", "run", "--format", "csv"])
        assert result.exit_code == 1
        assert "Export failed:" in result.output

    def test_status_missing_job(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["export", "status", str(uuid.uuid4())])
        assert result.exit_code == 1
        assert "Export job not found" in result.output

    def test_list_unknown_status(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["export", "list", "--status", "archived"])
        assert result.exit_code == 2

    def test_sweep_with_nothing_expired(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["export", "sweep"])
        assert result.exit_code == 0
        assert "Expired 0 export job(s)" in result.output


class TestCacheCommands:
    def test_invalidate_all(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["cache", "invalidate"])
        assert result.exit_code == 0
        assert "Removed 0 cache entries" in result.output

    def test_invalidate_by_query(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["cache", "invalidate", "--query", "Delivered Loads"])
        assert result.exit_code == 0

    def test_query_and_pattern_conflict(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["cache", "invalidate", "--query", "a", "--pattern", "b*"])
        assert result.exit_code == 2
