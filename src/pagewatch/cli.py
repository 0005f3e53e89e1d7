"""Command-line interface for pagewatch."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
import structlog
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pagewatch import __version__
from pagewatch.admin import AdminService
from pagewatch.config import Config, load_config
from pagewatch.container import DependencyContainer
from pagewatch.exceptions import PagewatchError
from pagewatch.observability import configure_logging, start_metrics_server
from pagewatch.pipeline import Pipeline, RunSummary, summarize_outcome
from pagewatch.protocols import RenderMode

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")

TELEMETRY_COLUMNS = (
    "run_at",
    "pages_checked",
    "changes_found",
    "extraction_calls",
    "notifications_sent",
    "errors",
    "duration_ms",
)


def _execute(ctx: click.Context, action: Callable[[DependencyContainer], Awaitable[T]]) -> T:
    """Run an async action inside a fully managed container."""

    async def runner() -> T:
        container = DependencyContainer(ctx.obj["config_path"], config=ctx.obj["config"])
        async with container.lifecycle():
            return await action(container)

    try:
        return asyncio.run(runner())
    except PagewatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _print_summary(summary: RunSummary) -> None:
    t = summary.telemetry
    table = Table(title=f"Run {summary.run_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    for name, value in (
        ("Pages checked", t.pages_checked),
        ("New upcoming events", t.changes_found),
        ("Extraction calls", t.extraction_calls),
        ("Notifications sent", t.notifications_sent),
        ("Errors", t.errors),
        ("Duration (ms)", t.duration_ms),
    ):
        table.add_row(name, str(value))
    console.print(table)
    for outcome in summary.failed:
        console.print(f"[yellow]{summarize_outcome(outcome)[1]}[/yellow]")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides configuration)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """pagewatch - watch web pages for new events, courses and offers."""
    ctx.ensure_object(dict)
    config_path = Path(config) if config else None
    try:
        loaded = load_config(config_path)
    except (ValidationError, yaml.YAMLError, FileNotFoundError) as e:
        console.print(f"[red]❌ Invalid configuration: {e}[/red]")
        sys.exit(1)
    if log_level:
        loaded.monitoring.log_level = log_level

    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = loaded
    configure_logging(loaded.monitoring)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Check every active page once."""

    async def action(container: DependencyContainer) -> RunSummary:
        return await Pipeline(container).run()

    _print_summary(_execute(ctx, action))


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds between runs (default from configuration)")
@click.pass_context
def watch(ctx: click.Context, interval: Optional[float]) -> None:
    """Run the monitoring loop forever."""
    config: Config = ctx.obj["config"]
    every = interval or config.runner.watch_interval_seconds
    start_metrics_server(config.monitoring)
    console.print(Panel.fit(f"[bold blue]pagewatch[/bold blue]\nInterval: {every:.0f}s", title="Watching"))

    async def action(container: DependencyContainer) -> None:
        pipeline = Pipeline(container)
        while True:
            summary = await pipeline.run()
            _print_summary(summary)
            await asyncio.sleep(every)

    _execute(ctx, action)


@cli.command()
@click.argument("page_id", type=int)
@click.pass_context
def check(ctx: click.Context, page_id: int) -> None:
    """Check one page now and notify immediately."""

    async def action(container: DependencyContainer) -> str:
        return await AdminService(container).force_check(page_id)

    console.print(_execute(ctx, action))


@cli.command()
@click.argument("url")
@click.option("--dynamic", is_flag=True, help="Page needs a browser to render")
@click.option("--baseline", is_flag=True, help="Store the current snapshot so only later changes are reported")
@click.pass_context
def add(ctx: click.Context, url: str, dynamic: bool, baseline: bool) -> None:
    """Start tracking a page."""
    mode = RenderMode.DYNAMIC if dynamic else RenderMode.STATIC

    async def action(container: DependencyContainer) -> Any:
        return await AdminService(container).register_page(url, mode, baseline=baseline)

    page = _execute(ctx, action)
    console.print(f"[green]✅ Tracking page {page.id}: {page.url} ({page.render_mode.value})[/green]")


@cli.command()
@click.argument("page_id", type=int)
@click.pass_context
def remove(ctx: click.Context, page_id: int) -> None:
    """Stop tracking a page."""

    async def action(container: DependencyContainer) -> None:
        await AdminService(container).deactivate_page(page_id)

    _execute(ctx, action)
    console.print(f"[green]Page {page_id} deactivated[/green]")


@cli.command()
@click.pass_context
def pages(ctx: click.Context) -> None:
    """List tracked pages."""

    async def action(container: DependencyContainer) -> Any:
        return await AdminService(container).list_pages()

    table = Table(title="Tracked pages")
    table.add_column("ID", style="cyan")
    table.add_column("URL")
    table.add_column("Mode")
    table.add_column("Active")
    table.add_column("Errors", style="red")
    table.add_column("Snapshot", style="magenta")
    for page in _execute(ctx, action):
        table.add_row(
            str(page.id),
            page.url,
            page.render_mode.value,
            "yes" if page.active else "no",
            str(page.error_count),
            page.last_fingerprint[:12] if page.last_fingerprint else "-",
        )
    console.print(table)


@cli.command()
@click.pass_context
def events(ctx: click.Context) -> None:
    """List pending (upcoming) events."""

    async def action(container: DependencyContainer) -> Any:
        return await AdminService(container).pending_events()

    table = Table(title="Upcoming events")
    table.add_column("ID", style="cyan")
    table.add_column("Date")
    table.add_column("Title", style="bold")
    table.add_column("Location")
    table.add_column("Price")
    for event in _execute(ctx, action):
        table.add_row(str(event.id), event.date_iso or "TBA", event.title, event.location, event.price_info)
    console.print(table)


@cli.command()
@click.option("--delete", "delete_id", type=int, default=None, help="Delete the event with this id")
@click.pass_context
def suspects(ctx: click.Context, delete_id: Optional[int]) -> None:
    """List possible duplicate events, or delete one."""
    if delete_id is not None:

        async def delete(container: DependencyContainer) -> bool:
            return await AdminService(container).delete_event(delete_id)

        if _execute(ctx, delete):
            console.print(f"[green]Event {delete_id} deleted[/green]")
        else:
            console.print(f"[yellow]Event {delete_id} not found[/yellow]")
        return

    async def action(container: DependencyContainer) -> Any:
        return await AdminService(container).duplicate_suspects()

    table = Table(title="Duplicate suspects")
    table.add_column("Date")
    table.add_column("Event A")
    table.add_column("Event B")
    table.add_column("Similarity", style="magenta")
    for a, b, score in _execute(ctx, action):
        table.add_row(a.date_iso or "", f"#{a.id} {a.title}", f"#{b.id} {b.title}", f"{score:.2f}")
    console.print(table)


@cli.command()
@click.argument("value", required=False)
@click.pass_context
def language(ctx: click.Context, value: Optional[str]) -> None:
    """Show or set the output language for extracted findings."""

    async def action(container: DependencyContainer) -> str:
        admin = AdminService(container)
        if value:
            return await admin.set_language(value)
        return await admin.get_language()

    console.print(f"Language: [bold]{_execute(ctx, action)}[/bold]")


@cli.command()
@click.option("--limit", default=10, show_default=True, help="Number of runs to show")
@click.pass_context
def telemetry(ctx: click.Context, limit: int) -> None:
    """Show telemetry of recent runs."""

    async def action(container: DependencyContainer) -> Any:
        return await AdminService(container).recent_telemetry(limit)

    table = Table(title="Recent runs")
    for column in TELEMETRY_COLUMNS:
        table.add_column(column)
    for row in _execute(ctx, action):
        table.add_row(*(str(row[c]) for c in TELEMETRY_COLUMNS))
    console.print(table)


@cli.command()
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate configuration and show component status."""
    config: Config = ctx.obj["config"]
    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_row("Database", str(config.storage.db_path))
    table.add_row("Extractor", f"{config.extraction.model} ({'key set' if config.extraction.api_key else 'NO API KEY'})")
    table.add_row("Notifier", "configured" if config.notifier.bot_token and config.notifier.chat_id else "disabled")
    table.add_row("Discovery", "enabled" if config.discovery.enabled else "disabled")
    table.add_row("Inter-page delay", f"{config.runner.inter_page_delay_seconds}s")
    console.print(table)

    if not config.extraction.api_key:
        console.print("[red]❌ No extraction API key configured (PAGEWATCH_EXTRACTION__API_KEY)[/red]")
        sys.exit(1)
    console.print("[green]✅ Configuration is valid![/green]")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
