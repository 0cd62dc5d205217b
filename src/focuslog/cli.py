"""Command-line interface for the activity categorizer."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_SETTINGS, PipelineSettings
from .models import ItemType
from .paths import get_db_path, get_log_path
from .providers import ProviderType

app = typer.Typer(help="Local-first activity categorizer.")


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the application data directory."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


def _db_option():
    return typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the activity SQLite database.",
    )


def _open_pipeline(db_path: Optional[Path]):
    from . import db
    from .pipeline import WindowEventPipeline

    database = db.Database(db_path or get_db_path())
    return WindowEventPipeline.create(database, PipelineSettings())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API server."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API server."
    ),
    db_path: Optional[Path] = _db_option(),
    max_concurrent: int = typer.Option(
        2, "--max-concurrent", min=1, help="Categorization jobs allowed in flight."
    ),
    delay_ms: float = typer.Option(
        500.0, "--delay", min=0.0, help="Milliseconds to wait after each job."
    ),
    cache_minutes: float = typer.Option(
        5.0, "--cache-ttl", min=0.0, help="Minutes a categorization decision is reused."
    ),
    timeout_seconds: float = typer.Option(
        60.0, "--timeout", min=1.0, help="Seconds to wait for a model completion."
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the interactive API docs once the server is up.",
    ),
) -> None:
    """Start the local API server that receives window observations."""
    from .server_runner import run_server

    settings = PipelineSettings.from_options(
        max_concurrent=max_concurrent,
        delay_ms=delay_ms,
        cache_ttl_minutes=cache_minutes,
        request_timeout_seconds=timeout_seconds,
    )
    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=settings,
        open_browser=open_browser,
    )


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Print a high-level summary for a specific day."""
    from .reporting import SummaryPrinter

    target = _parse_day(date)
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


@app.command("settings")
def show_settings(db_path: Optional[Path] = _db_option()) -> None:
    """Show the stored application settings."""
    from .db import database_connection, fetch_settings

    with database_connection(db_path or get_db_path()) as conn:
        values = fetch_settings(conn)
    for key in sorted(values):
        typer.echo(f"{key:<24} {values[key] or ''}")


@app.command("set")
def set_value(
    key: str = typer.Argument(..., help="Setting name, e.g. ai_provider."),
    value: str = typer.Argument(..., help="New value."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Change one application setting."""
    from .db import database_connection, set_setting

    if key not in DEFAULT_SETTINGS:
        typer.echo(f"Unknown setting {key!r}. Known: {', '.join(sorted(DEFAULT_SETTINGS))}", err=True)
        raise typer.Exit(code=2)
    with database_connection(db_path or get_db_path()) as conn:
        set_setting(conn, key, value)
    typer.echo(f"{key} = {value}")


@app.command()
def models(
    provider: ProviderType = typer.Option(
        ProviderType.OLLAMA, "--provider", help="Provider to query."
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Override the configured provider URL."
    ),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Test a provider connection and list its models."""
    from . import db

    pipeline = _open_pipeline(db_path)

    async def _run():
        settings = await pipeline.database.run(db.load_app_settings)
        return await pipeline.providers.test_connection(settings, provider, base_url)

    try:
        result = asyncio.run(_run())
    finally:
        pipeline.providers.close()
        pipeline.database.close()
    typer.echo(result.message)
    for name in result.models or []:
        typer.echo(f"  {name}")
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def suggest(
    goals: Optional[str] = typer.Argument(
        None, help="Projects and goals to base suggestions on. Defaults to stored goals."
    ),
    count: int = typer.Option(5, "--count", min=1, max=12, help="Number of categories."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Ask the configured model for category suggestions."""
    from . import db

    pipeline = _open_pipeline(db_path)

    async def _run():
        user = await pipeline.database.run(db.get_or_create_local_user)
        settings = await pipeline.database.run(db.load_app_settings)
        return await pipeline.ai.generate_category_suggestions(
            settings, goals if goals is not None else user.goals_text, count
        )

    try:
        suggestions = asyncio.run(_run())
    finally:
        pipeline.providers.close()
        pipeline.database.close()
    if not suggestions:
        typer.echo("No suggestions available (is the AI provider running?).", err=True)
        raise typer.Exit(code=1)
    for item in suggestions:
        marker = "+" if item.is_productive else "-"
        typer.echo(f"{marker} {item.emoji} {item.name}: {item.description}")


@app.command()
def recategorize(
    identifier: str = typer.Argument(..., help="Application name or exact URL."),
    category: str = typer.Option(..., "--category", help="Target category name."),
    item_type: ItemType = typer.Option(ItemType.APP, "--type", help="app or website."),
    date: Optional[str] = typer.Option(
        None, "--date", help="Day (YYYY-MM-DD) to recategorize. Defaults to today."
    ),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Move every event of an app or website on one day into a category."""
    from . import db
    from .pipeline import resolve_category

    start = _parse_day(date)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    pipeline = _open_pipeline(db_path)

    async def _run() -> Optional[int]:
        user = await pipeline.database.run(db.get_or_create_local_user)
        categories = await pipeline.database.run(db.fetch_categories, user.id)
        target = resolve_category(categories, category)
        if target is None:
            return None
        return await pipeline.recategorize_events_by_identifier(
            identifier, item_type, start, end, target.id
        )

    try:
        updated = asyncio.run(_run())
    finally:
        pipeline.providers.close()
        pipeline.database.close()
    if updated is None:
        typer.echo(f"No category named {category!r}.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Recategorized {updated} event(s).")


def _parse_day(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise typer.BadParameter("Expected YYYY-MM-DD") from exc
