"""Typer CLI root application."""

import typer

from analytics_engine.core.config import get_settings
from analytics_engine.core.logging import setup_logging

app = typer.Typer(name="analytics-engine", help="Analytics query engine and export pipeline CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from analytics_engine.cli.cache_cmd import cache_app
    from analytics_engine.cli.db_cmd import db_app
    from analytics_engine.cli.export_cmd import export_app
    from analytics_engine.cli.query_cmd import query_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(query_app, name="query", help="Saved query commands")
    app.add_typer(export_app, name="export", help="Export job commands")
    app.add_typer(cache_app, name="cache", help="Result cache commands")


_register_subcommands()
