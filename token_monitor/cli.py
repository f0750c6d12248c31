"""Command line interface for Token Monitor."""

import json
import logging
import threading
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import click
import duckdb
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import config_manager
from .errors import MonitorError, create_user_friendly_error
from .pricing import get_pricing_provider, reset_pricing_provider
from .services.discovery import SessionLocator
from .services.live_monitor import LiveMonitor
from .services.rate_limiter import RateLimitTracker, format_rate_limit_summary
from .services.registry import SessionRegistry
from .services.transcript_cache import TranscriptCache
from .services.update_checker import UpdateChecker
from .store.history import HistoryStore
from .ui.dashboard import Dashboard, format_cost, format_tokens

logger = logging.getLogger(__name__)

# Errors reported to the user instead of a traceback
HANDLED_ERRORS = (MonitorError, OSError, ValueError, duckdb.Error)


def json_serializer(obj):
    """Custom JSON serializer for special types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    elif isinstance(obj, Decimal):
        return float(obj)
    elif hasattr(obj, "isoformat"):
        return obj.isoformat()
    else:
        return str(obj)


def _fail(ctx: click.Context, action: str, error: BaseException) -> None:
    click.echo(f"Error {action}: {create_user_friendly_error(error)}", err=True)
    if ctx.obj["verbose"]:
        click.echo(f"Details: {error!r}", err=True)
    ctx.exit(1)


def _locator(config) -> SessionLocator:
    return SessionLocator(
        extension=config.monitor.transcript_extension,
        agent_marker=config.monitor.agent_marker,
    )


def _active_within(minutes: Optional[float]) -> Optional[timedelta]:
    return timedelta(minutes=minutes) if minutes else None


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool):
    """Token Monitor - live token, cost and rate-limit tracking.

    Watches Claude Code transcripts as they are written and shows running
    token totals, cost, context usage and rate-limit exposure per session.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = Console()

    try:
        if config:
            config_manager.config_path = config
            config_manager.reload()
            reset_pricing_provider()

        ctx.obj["config"] = config_manager.config
        ctx.obj["pricing"] = get_pricing_provider()
        ctx.obj["limits"] = config_manager.load_limits_config()
    except ValueError as e:
        click.echo(
            f"Error initializing Token Monitor: {create_user_friendly_error(e)}", err=True
        )
        ctx.exit(1)


@cli.command()
@click.argument("path", type=click.Path(exists=True), required=False)
@click.option(
    "--max-sessions", "-m", type=int, default=None, help="Maximum sessions to watch"
)
@click.option(
    "--active-within",
    "-a",
    type=float,
    default=None,
    help="Only watch sessions modified within this many minutes",
)
@click.option("--no-history", is_flag=True, help="Do not read or write session history")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_context
def live(
    ctx: click.Context,
    path: Optional[str],
    max_sessions: Optional[int],
    active_within: Optional[float],
    no_history: bool,
    no_color: bool,
):
    """Start the live dashboard.

    PATH: Claude Code projects directory (defaults to ~/.claude/projects)

    Keys: n / p switch sessions, r rescans for new sessions, q quits.
    """
    config = ctx.obj["config"]
    updates = {}
    if max_sessions is not None:
        updates["max_sessions"] = max_sessions
    if active_within is not None:
        updates["active_within_minutes"] = active_within
    if updates:
        config = config.model_copy(
            update={"monitor": config.monitor.model_copy(update=updates)}
        )

    console = Console(no_color=True) if no_color or not config.ui.colors else ctx.obj["console"]
    dashboard = Dashboard(console)

    release_holder = {}
    if config.updates.enabled:
        threading.Thread(
            target=_background_update_check,
            args=(config, release_holder),
            name="update-check",
            daemon=True,
        ).start()

    history = None
    try:
        if not no_history:
            history = HistoryStore(config.paths.history_db)

        monitor = LiveMonitor(
            dashboard,
            config=config,
            pricing=ctx.obj["pricing"],
            registry=SessionRegistry(pricing=ctx.obj["pricing"], limits=ctx.obj["limits"]),
            history=history,
        )
        with monitor:
            monitor.start(path or config.paths.projects_dir)
            dashboard.run(monitor, refresh_per_second=config.ui.refresh_per_second)
    except HANDLED_ERRORS as e:
        _fail(ctx, "in live monitoring", e)
    finally:
        if history is not None:
            history.close()

    release = release_holder.get("release")
    if release is not None:
        console.print(
            f"[yellow]Token Monitor {release.tag_name} is available "
            f"(running {__version__}): {release.html_url}[/yellow]"
        )


def _background_update_check(config, holder: dict) -> None:
    checker = UpdateChecker(
        __version__,
        api_url=config.updates.api_url,
        check_interval=timedelta(hours=config.updates.check_interval_hours),
    )
    try:
        holder["release"] = checker.check()
    except MonitorError as e:
        logger.debug("Update check failed: %s", e)


@cli.command()
@click.argument("path", type=click.Path(exists=True), required=False)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option(
    "--limit", "-l", type=int, default=None, help="Limit number of sessions listed"
)
@click.option(
    "--active-within",
    "-a",
    type=float,
    default=None,
    help="Only list sessions modified within this many minutes",
)
@click.pass_context
def sessions(
    ctx: click.Context,
    path: Optional[str],
    output_format: str,
    limit: Optional[int],
    active_within: Optional[float],
):
    """List discovered sessions with token totals from their recent history.

    PATH: Claude Code projects directory (defaults to ~/.claude/projects)
    """
    config = ctx.obj["config"]
    pricing = ctx.obj["pricing"]
    console = ctx.obj["console"]
    cache = TranscriptCache(
        ttl_seconds=config.cache.ttl_seconds, tail_bytes=config.cache.tail_bytes
    )

    try:
        result = _locator(config).discover(
            path or config.paths.projects_dir,
            max_results=limit,
            active_within=_active_within(active_within),
        )
    except HANDLED_ERRORS as e:
        _fail(ctx, "discovering sessions", e)
        return

    if not result.sessions:
        click.echo("No sessions found.", err=True)
        ctx.exit(1)

    rows = []
    for info in result.sessions:
        summary = cache.parse(str(info.file_path), config.cache.max_lines)
        cost = pricing.calculate_cost(
            summary.model, summary.input_tokens, summary.output_tokens, summary.cache_tokens
        )
        rows.append((info, summary, cost))

    if output_format == "json":
        payload = [
            {
                "session": info,
                "summary": summary,
                "cost": cost,
                "active": info.session_id == result.active_id,
            }
            for info, summary, cost in rows
        ]
        click.echo(json.dumps(payload, indent=2, default=json_serializer))
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Session", style="cyan")
    table.add_column("Project")
    table.add_column("Modified")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for info, summary, cost in rows:
        marker = "*" if info.session_id == result.active_id else ""
        table.add_row(
            f"{marker}{info.session_id[:8]}",
            info.project,
            info.last_modified.strftime("%Y-%m-%d %H:%M"),
            summary.model or "-",
            str(summary.message_count),
            format_tokens(summary.total_tokens),
            format_cost(cost),
        )
    console.print(table)
    if result.error_count:
        console.print(f"[yellow]{result.error_count} project(s) could not be scanned[/yellow]")


@cli.command()
@click.argument("path", type=click.Path(exists=True), required=False)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
def status(ctx: click.Context, path: Optional[str], output_format: str):
    """Show a one-shot summary of the most recent session.

    PATH: Claude Code projects directory (defaults to ~/.claude/projects)
    """
    config = ctx.obj["config"]
    pricing = ctx.obj["pricing"]
    cache = TranscriptCache(
        ttl_seconds=config.cache.ttl_seconds, tail_bytes=config.cache.tail_bytes
    )

    try:
        info = _locator(config).find_active(path or config.paths.projects_dir)
    except HANDLED_ERRORS as e:
        _fail(ctx, "finding the active session", e)
        return

    summary = cache.parse(str(info.file_path), config.cache.max_lines)
    cost = pricing.calculate_cost(
        summary.model, summary.input_tokens, summary.output_tokens, summary.cache_tokens
    )
    context_pct = pricing.context_percentage(summary.model, summary.total_tokens)

    if output_format == "json":
        payload = {
            "session": info,
            "summary": summary,
            "cost": cost,
            "context_pct": context_pct,
        }
        click.echo(json.dumps(payload, indent=2, default=json_serializer))
        return

    console = ctx.obj["console"]
    console.print(f"[bold cyan]Session[/bold cyan]  {info.session_id}")
    console.print(f"[bold cyan]Project[/bold cyan]  {info.project}")
    console.print(f"[bold cyan]Model[/bold cyan]    {pricing.display_name(summary.model)}")
    console.print(
        f"[bold cyan]Tokens[/bold cyan]   {format_tokens(summary.input_tokens)} in / "
        f"{format_tokens(summary.output_tokens)} out / "
        f"{format_tokens(summary.cache_tokens)} cache"
    )
    console.print(f"[bold cyan]Context[/bold cyan]  {context_pct:.1f}%")
    console.print(f"[bold cyan]Cost[/bold cyan]     {format_cost(cost)}")


@cli.command()
@click.option("--limit", "-l", type=int, default=None, help="Number of sessions to show")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
def history(ctx: click.Context, limit: Optional[int], output_format: str):
    """Show recently monitored sessions from the history database."""
    config = ctx.obj["config"]
    limit = limit if limit is not None else config.ui.history_limit

    try:
        with HistoryStore(config.paths.history_db) as store:
            records = store.recent_history(limit)
    except HANDLED_ERRORS as e:
        _fail(ctx, "reading history", e)
        return

    if output_format == "json":
        click.echo(json.dumps(records, indent=2, default=json_serializer))
        return

    if not records:
        ctx.obj["console"].print("[dim]No history yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("When")
    table.add_column("Session", style="cyan")
    table.add_column("Project")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            record.id[:8],
            record.project,
            record.model or "-",
            format_tokens(record.total_tokens),
            format_cost(record.cost),
        )
    ctx.obj["console"].print(table)


@cli.command()
@click.pass_context
def limits(ctx: click.Context):
    """Show the rate limit defaults in effect."""
    limits_config = ctx.obj["limits"]
    console = ctx.obj["console"]
    console.print(f"Requests per window: {limits_config.requests_per_minute}")
    console.print(f"Tokens per window:   {limits_config.tokens_per_minute:,}")
    console.print(f"Window:              {limits_config.window_seconds:g}s")

    idle = RateLimitTracker(limits_config).status()
    console.print(f"[dim]Idle status: {format_rate_limit_summary(idle)}[/dim]")


@cli.command()
@click.pass_context
def pricing(ctx: click.Context):
    """List the model pricing table (USD per million tokens)."""
    provider = ctx.obj["pricing"]
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Model", style="cyan")
    table.add_column("Name")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Cache R", justify="right")
    table.add_column("Context", justify="right")

    for model_id, p in sorted(provider.all_pricing().items()):
        table.add_row(
            model_id,
            p.name,
            f"${p.input:.2f}",
            f"${p.output:.2f}",
            f"${p.cache_read:.2f}",
            f"{p.context_window:,}",
        )
    ctx.obj["console"].print(table)


@cli.command("check-update")
@click.pass_context
def check_update(ctx: click.Context):
    """Check GitHub for a newer release."""
    config = ctx.obj["config"]
    checker = UpdateChecker(
        __version__,
        api_url=config.updates.api_url,
        check_interval=timedelta(hours=config.updates.check_interval_hours),
    )
    try:
        release = checker.check(force=True)
    except HANDLED_ERRORS as e:
        _fail(ctx, "checking for updates", e)
        return

    if release is None:
        click.echo(f"Token Monitor {__version__} is up to date.")
    else:
        click.echo(f"Update available: {release.tag_name} ({release.html_url})")


def main():
    """Entry point for the CLI application."""
    cli()
