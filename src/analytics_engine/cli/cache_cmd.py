"""Result cache CLI commands."""

import asyncio

import typer

cache_app = typer.Typer()


@cache_app.command("invalidate")
def invalidate(
    query_name: str | None = typer.Option(None, "--query", help="Only entries of the named query"),
    pattern: str | None = typer.Option(None, "--pattern", help="Glob over full cache keys"),
) -> None:
    """Delete cached query results (all of them by default)."""
    if query_name and pattern:
        typer.echo("Use either --query or --pattern, not both.", err=True)
        raise typer.Exit(code=2)
    removed = asyncio.run(_invalidate(query_name, pattern))
    typer.echo(f"Removed {removed} cache entries")


async def _invalidate(query_name: str | None, pattern: str | None) -> int:
    from analytics_engine.cli.common import services
    from analytics_engine.lib.cache import query_pattern

    async with services() as container:
        executor = container.executor
        if query_name:
            pattern = query_pattern(executor.key_prefix, query_name)
        return await executor.invalidate(pattern)
