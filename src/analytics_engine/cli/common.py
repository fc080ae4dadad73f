"""Helpers shared by CLI command groups."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import typer

from analytics_engine.core.config import get_settings
from analytics_engine.core.container import ServiceContainer


def parse_params(values: list[str] | None) -> dict[str, Any]:
    """Parse repeated ``name=value`` options; values are JSON when they parse as JSON.

    Raises:
        typer.BadParameter: If an entry has no ``=``.
    """
    params: dict[str, Any] = {}
    for item in values or []:
        name, sep, raw = item.partition("=")
        if not sep or not name.strip():
            msg = f"Expected name=value, got {item!r}"
            raise typer.BadParameter(msg)
        try:
            params[name.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            params[name.strip()] = raw
    return params


def echo_json(data: Any) -> None:
    """Print ``data`` as indented JSON."""
    typer.echo(json.dumps(data, indent=2, default=str))


@asynccontextmanager
async def services() -> AsyncIterator[ServiceContainer]:
    """Build, initialize and finally close a service container from settings."""
    container = ServiceContainer(get_settings())
    await container.init()
    try:
        yield container
    finally:
        await container.close()
