"""
Rewind CLI.

Usage:
    rewind sync                      # Sync every active source, then summarize
    rewind sync --source ID          # Sync one source
    rewind sync --no-summarize       # Fetch only
    rewind summarize                 # Sweep the backlog of pending/failed items
    rewind retry ITEM_ID             # Manually retry a failed or skipped item
    rewind status [ITEM_ID]          # Pipeline counts, or one item's state
    rewind sources add URL           # Subscribe to a feed
    rewind sources list              # Show subscriptions
    rewind sources import            # Register sources from sources.yaml
    rewind sources import-opml FILE  # Register sources from an OPML export
    rewind transcript ITEM_ID FILE   # Attach a podcast transcript
    rewind watch                     # Keep syncing on a schedule
    rewind init                      # Write ~/.config/rewind/config.env
    rewind config                    # Verify configuration
"""

import json
import threading
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rewind.config import XDG_CONFIG_PATH, Settings, SourcesFile, get_settings
from rewind.errors import PipelineError
from rewind.llm import LLMError
from rewind.logging_config import setup_logging
from rewind.models import SourceKind, SourceResult, SyncRun
from rewind.storage.db import utcnow

__version__ = "0.1.0"

console = Console()

# Global state
state = {"verbose": False}


def _load_settings() -> Settings:
    """Load settings with a user-friendly error on failure."""
    try:
        settings = get_settings()
    except Exception as e:
        console.print(
            "[red]Configuration error.[/red] "
            "Check your config file or environment variables.\n"
        )
        for error in getattr(e, "errors", lambda: [])():
            loc = ".".join(str(part) for part in error["loc"])
            console.print(f"  [red]✗[/red] {loc}: {error['msg']}")
        if not getattr(e, "errors", None):
            console.print(f"  [red]✗[/red] {e}")
        console.print("\n[dim]Run 'rewind config' to verify.[/dim]")
        raise typer.Exit(code=1) from None

    if not state["verbose"]:
        setup_logging(settings.log_level, settings.log_format)
    return settings


def _pipeline(settings: Settings, summaries: bool = True, use_cache: bool = True):
    from rewind.pipeline import Pipeline

    try:
        return Pipeline(settings, summaries=summaries, use_cache=use_cache)
    except (PipelineError, LLMError) as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1) from None


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"Rewind CLI v{__version__}")
        raise typer.Exit()


_QUICK_REF_ITEMS = [
    ("init", "[--force]"),
    ("sync", "[--source ID] [--no-summarize] [--json]"),
    ("summarize", "[--limit N] [--source ID] [--no-cache]"),
    ("retry", "ITEM_ID"),
    ("status", "[ITEM_ID] [--json]"),
    ("sources", "add URL | list | import | import-opml FILE | pause ID | resume ID"),
    ("transcript", "ITEM_ID FILE"),
    ("watch", "[--hidden]"),
    ("config", ""),
    ("cache", "[--clear]"),
]


class _HelpGroup(typer.core.TyperGroup):
    """Custom group that adds a boxed quick-reference section to --help."""

    def format_help(self, ctx, formatter):
        if not typer.core.HAS_RICH or self.rich_markup_mode is None:
            super().format_help(ctx, formatter)
            with formatter.section("Quick Reference"):
                formatter.write_dl(_QUICK_REF_ITEMS)
            return

        from typer import rich_utils

        rich_utils.rich_format_help(
            obj=self,
            ctx=ctx,
            markup_mode=self.rich_markup_mode,
        )

        quick_commands = [
            click.Command(name=command, help=usage, short_help=usage)
            for command, usage in _QUICK_REF_ITEMS
        ]
        rich_utils._print_commands_panel(
            name="Quick Reference",
            commands=quick_commands,
            markup_mode=self.rich_markup_mode,
            console=rich_utils._get_rich_console(),
            cmd_len=max(len(command) for command, _ in _QUICK_REF_ITEMS),
        )


app = typer.Typer(
    name="rewind",
    help="Rewind - sync feeds and podcasts, summarize what's new",
    no_args_is_help=True,
    add_completion=False,
    cls=_HelpGroup,
    rich_markup_mode="markdown",
)
sources_app = typer.Typer(help="Manage content sources.", no_args_is_help=True)
app.add_typer(sources_app, name="sources")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging output."
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit."
    ),
):
    """
    Rewind - sync feeds and podcasts, summarize what's new
    """
    state["verbose"] = verbose
    if verbose:
        setup_logging("DEBUG")
    else:
        setup_logging("INFO")


SAMPLE_SOURCES = """# Sources imported by 'rewind sources import'
sources:
  # Example Blog:
  #   url: https://example.com/feed.xml
  # Example Show:
  #   url: https://example.com/podcast.xml
  #   kind: podcast
  #   auto_summarize: false
"""


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
) -> None:
    """Set up Rewind with an interactive wizard."""
    config_file = XDG_CONFIG_PATH / "config.env"

    if config_file.exists() and not force:
        console.print(f"[yellow]Config already exists at {config_file}[/yellow]")
        console.print("Use --force to overwrite.")
        raise typer.Exit(code=1)

    console.print(Panel.fit(
        "[bold]Rewind Setup Wizard[/bold]\n"
        "Configure sync and summarization",
        border_style="blue",
    ))

    console.print("\n[bold cyan]LLM Configuration[/bold cyan]")
    provider = typer.prompt(
        "LLM provider",
        default="gemini",
        type=click.Choice(["gemini", "openai", "anthropic"]),
    )
    api_key = typer.prompt(f"API key for {provider}", hide_input=True)
    if not api_key.strip():
        console.print("[red]API key cannot be empty[/red]")
        raise typer.Exit(code=1)

    XDG_CONFIG_PATH.mkdir(parents=True, exist_ok=True)

    config_content = f"""# Rewind Configuration
# Generated by 'rewind init'

# Paths (point to XDG config directory)
CONFIG_DIR={XDG_CONFIG_PATH}
DATA_DIR={XDG_CONFIG_PATH / "data"}

# LLM Settings
LLM_PROVIDER={provider}
LLM_API_KEY={api_key.strip()}

# Optional: Override defaults
# LLM_MODEL=
# MAX_RETRIES=3
# RETRY_BACKOFF_MINUTES=[5, 30, 120]
# SYNC_MIN_INTERVAL_MINUTES=5
# SYNC_STALE_MINUTES=30
# LOG_FORMAT=json
"""
    config_file.write_text(config_content)
    console.print(f"\n[green]✓[/green] Config written to {config_file}")

    sources_file = XDG_CONFIG_PATH / "sources.yaml"
    if not sources_file.exists() or force:
        sources_file.write_text(SAMPLE_SOURCES)
        console.print(f"[green]✓[/green] Sample sources written to {sources_file}")

    console.print("\n[bold]Next steps:[/bold]")
    console.print("  rewind sources add URL    # subscribe to a feed")
    console.print("  rewind sync               # fetch and summarize")


def _print_sync_run(run: SyncRun) -> None:
    table = Table(title="Sync Results")
    table.add_column("Source", style="cyan", max_width=40)
    table.add_column("Found", justify="right")
    table.add_column("Added", justify="right", style="green")
    table.add_column("Updated", justify="right")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Status")

    for result in run.results:
        table.add_row(
            result.source_name,
            str(result.items_found),
            str(result.items_added),
            str(result.items_updated),
            str(result.items_skipped),
            "[green]ok[/green]" if result.success else f"[red]{result.error_code}[/red]",
        )

    console.print(table)
    console.print(
        f"[dim]{run.sources_succeeded}/{run.sources_attempted} sources succeeded "
        f"in {run.duration_seconds:.1f}s[/dim]"
    )
    _print_source_errors(run.results)


def _print_source_errors(results: list[SourceResult]) -> None:
    failed = [r for r in results if not r.success]
    if not failed:
        return
    console.print("\n[yellow]Source failures:[/yellow]")
    for result in failed[:10]:
        hint = " (retryable)" if result.retryable else ""
        console.print(f"  • {result.source_name}: {result.error}{hint}")
    if len(failed) > 10:
        console.print(f"  ... and {len(failed) - 10} more")


@app.command()
def sync(
    source: str | None = typer.Option(None, "--source", "-s", help="Sync only this source id"),
    no_summarize: bool = typer.Option(False, "--no-summarize", help="Fetch without summarizing"),
    json_format: bool = typer.Option(False, "--json", help="Output result as JSON"),
) -> None:
    """Fetch new content from sources and summarize new items."""
    settings = _load_settings()

    with _pipeline(settings, summaries=not no_summarize) as pipeline:
        if source:
            result = pipeline.sync_one(source)
            if pipeline.queue is not None:
                pipeline.queue.drain()
            if json_format:
                print(result.model_dump_json(indent=2))
            else:
                run = SyncRun.from_results(
                    run_id="single",
                    started_at=utcnow(),
                    results=[result],
                    duration_seconds=result.duration_seconds,
                )
                _print_sync_run(run)
            if not result.success:
                raise typer.Exit(code=1)
            return

        if not json_format:
            console.print("[bold]Syncing sources...[/bold]")
        report = pipeline.run_pass()
        pipeline.db.set_last_sync_time(report.run.started_at)

    if json_format:
        data = report.run.summary_dict()
        if report.backlog is not None:
            data["summaries"] = {
                "queued_completed": len(report.queued.completed),
                "queued_failed": len(report.queued.failures),
                "backlog_completed": report.backlog.completed,
                "backlog_failed": report.backlog.failed,
            }
        print(json.dumps(data, indent=2))
    else:
        _print_sync_run(report.run)
        if report.queued is not None and report.backlog is not None:
            completed = len(report.queued.completed) + report.backlog.completed
            failed = len(report.queued.failures) + report.backlog.failed
            console.print(f"\n[green]{completed} summaries created[/green], {failed} failed")

    if report.run.sources_failed:
        raise typer.Exit(code=1)


@app.command()
def summarize(
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum items to attempt"),
    source: str | None = typer.Option(None, "--source", "-s", help="Only items from this source"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Skip the response cache"),
) -> None:
    """Summarize pending items and failed items whose backoff has elapsed."""
    settings = _load_settings()

    with _pipeline(settings, use_cache=not no_cache) as pipeline:
        pipeline.state_machine.recover_stale()
        report = pipeline.state_machine.process_pending(limit=limit, source_id=source)

    if not report.attempted and not report.promoted:
        console.print("[yellow]Nothing to summarize[/yellow]")
        if report.deferred:
            console.print(f"[dim]{report.deferred} item(s) waiting for retry backoff[/dim]")
        return

    table = Table(title="Summarization Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Attempted", str(report.attempted))
    table.add_row("Completed", str(report.completed))
    table.add_row("Failed", str(report.failed))
    table.add_row("Skipped", str(report.skipped))
    table.add_row("Waiting for backoff", str(report.deferred))
    table.add_row("Permanently failed", str(report.promoted))
    console.print(table)

    failures = [r for r in report.results if not r.success]
    if failures:
        console.print("\n[yellow]Failures:[/yellow]")
        for result in failures[:10]:
            console.print(f"  • [{result.code}] {result.message}")


@app.command()
def retry(
    item_id: str = typer.Argument(..., help="Content item id"),
) -> None:
    """Retry summarizing an item that failed or was skipped."""
    settings = _load_settings()

    with _pipeline(settings) as pipeline:
        result = pipeline.retry(item_id)

    if result.success:
        console.print(f"[green]✓ {result.message or 'Summary created'}[/green]")
        return

    console.print(f"[red]✗ {result.message}[/red] [dim]({result.code})[/dim]")
    if result.retryable:
        console.print("[dim]This failure is transient; try again later.[/dim]")
    raise typer.Exit(code=1)


@app.command()
def status(
    item_id: str | None = typer.Argument(None, help="Show one item's processing state"),
    json_format: bool = typer.Option(False, "--json", help="Output status as JSON"),
) -> None:
    """Show pipeline status and statistics."""
    settings = _load_settings()

    if not settings.db_path.exists():
        if json_format:
            print(json.dumps({"error": "Database not found"}))
        else:
            console.print("[yellow]No database found. Run 'rewind sync' first.[/yellow]")
        return

    with _pipeline(settings, summaries=False) as pipeline:
        db = pipeline.db
        if item_id:
            try:
                item_status = pipeline.get_status(item_id)
            except PipelineError as exc:
                console.print(f"[red]✗ {exc.message}[/red]")
                raise typer.Exit(code=1) from None
            if json_format:
                print(item_status.model_dump_json(indent=2))
                return
            table = Table(title=f"Item {item_id}")
            table.add_column("Field", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Status", item_status.processing_status.value)
            table.add_row("Retry count", str(item_status.retry_count))
            table.add_row("Has summary", "yes" if item_status.has_summary else "no")
            table.add_row("Last error", item_status.last_error or "-")
            console.print(table)
            return

        counts = db.status_counts()
        sources = db.list_sources(active_only=False)
        candidates = db.list_pause_candidates(settings.pause_error_threshold)
        last_sync = db.get_last_sync_time()

    data = {
        "status_counts": counts,
        "total_items": sum(counts.values()),
        "source_count": len(sources),
        "active_sources": sum(1 for s in sources if s.is_active),
        "last_sync": last_sync.isoformat() if last_sync else None,
        "pause_candidates": [
            {"id": s.id, "title": s.title, "errors": s.fetch_error_count, "last_error": s.last_error_message}
            for s in candidates
        ],
    }

    if json_format:
        print(json.dumps(data, indent=2))
        return

    status_table = Table(title="Item Status")
    status_table.add_column("Status", style="cyan")
    status_table.add_column("Count", style="green")
    for name, count in counts.items():
        status_table.add_row(name, str(count))
    status_table.add_row("[bold]Total[/bold]", f"[bold]{data['total_items']}[/bold]")
    console.print(status_table)

    console.print(f"\n[dim]{data['active_sources']} of {data['source_count']} sources active[/dim]")
    console.print(f"[dim]Last sync: {data['last_sync'] or 'never'}[/dim]")

    if candidates:
        console.print("\n[yellow]Sources failing repeatedly (consider pausing):[/yellow]")
        for source in candidates:
            console.print(
                f"  • {source.title} [dim]({source.id})[/dim]: "
                f"{source.fetch_error_count} errors, last: {source.last_error_message}"
            )


@sources_app.command("add")
def sources_add(
    url: str = typer.Argument(..., help="Feed URL"),
    title: str | None = typer.Option(None, "--title", "-t", help="Display name (default: feed title)"),
    kind: SourceKind = typer.Option(SourceKind.RSS, "--kind", "-k", help="rss, podcast or newsletter"),
    no_auto_summarize: bool = typer.Option(
        False, "--no-auto-summarize", help="Do not summarize new items automatically"
    ),
) -> None:
    """Subscribe to a feed."""
    settings = _load_settings()

    with _pipeline(settings, summaries=False) as pipeline:
        registration = pipeline.register_source(
            url, title=title, kind=kind, auto_summarize=not no_auto_summarize
        )

    source = registration.source
    if registration.created:
        console.print(f"[green]✓ Added {source.title}[/green] [dim]({source.id})[/dim]")
    else:
        console.print(f"[yellow]Already subscribed:[/yellow] {source.title} [dim]({source.id})[/dim]")


@sources_app.command("list")
def sources_list(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Include paused sources"),
) -> None:
    """Show subscribed sources."""
    settings = _load_settings()

    with _pipeline(settings, summaries=False) as pipeline:
        sources = pipeline.db.list_sources(active_only=not all_sources)
        counts = {s.id: pipeline.db.count_items(s.id) for s in sources}

    if not sources:
        console.print("[yellow]No sources. Add one with 'rewind sources add URL'.[/yellow]")
        return

    table = Table(title="Sources")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Kind")
    table.add_column("Items", justify="right")
    table.add_column("Last fetch")
    table.add_column("Errors", justify="right")

    for source in sources:
        last = source.last_successful_fetch_at
        errors = str(source.fetch_error_count)
        table.add_row(
            source.id,
            source.title if source.is_active else f"{source.title} [dim](paused)[/dim]",
            source.kind.value,
            str(counts[source.id]),
            last.strftime("%Y-%m-%d %H:%M") if last else "-",
            f"[red]{errors}[/red]" if source.fetch_error_count else errors,
        )
    console.print(table)


@sources_app.command("import")
def sources_import(
    path: Path | None = typer.Option(None, "--file", "-f", help="sources.yaml path"),
) -> None:
    """Register every source declared in sources.yaml."""
    settings = _load_settings()
    path = path or settings.sources_path

    try:
        entries = SourcesFile(path).sources
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from None

    if not entries:
        console.print(f"[yellow]No sources found in {path}[/yellow]")
        return

    added = 0
    with _pipeline(settings, summaries=False) as pipeline:
        for name, entry in entries.items():
            registration = pipeline.register_source(
                str(entry.url),
                title=entry.title or name,
                kind=entry.kind,
                auto_summarize=entry.auto_summarize,
            )
            added += int(registration.created)

    console.print(f"[green]✓ {added} added[/green], {len(entries) - added} already subscribed")


@sources_app.command("import-opml")
def sources_import_opml(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="OPML file"),
) -> None:
    """Register every feed in an OPML export."""
    settings = _load_settings()

    from rewind.ingest.opml import load_opml

    try:
        feeds = load_opml(path)
    except PipelineError as exc:
        console.print(f"[red]✗ {exc.message}[/red]")
        raise typer.Exit(code=1) from None

    added = 0
    with _pipeline(settings, summaries=False) as pipeline:
        for feed in feeds:
            registration = pipeline.register_source(
                feed.feed_url, title=feed.title, kind=feed.kind
            )
            added += int(registration.created)

    console.print(f"[green]✓ {added} added[/green], {len(feeds) - added} already subscribed")


def _set_active(source_id: str, active: bool) -> None:
    settings = _load_settings()
    with _pipeline(settings, summaries=False) as pipeline:
        changed = pipeline.db.set_source_active(source_id, active)
    if not changed:
        console.print(f"[red]✗ Source {source_id} not found[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Source {'resumed' if active else 'paused'}[/green]")


@sources_app.command("pause")
def sources_pause(source_id: str = typer.Argument(..., help="Source id")) -> None:
    """Stop syncing a source."""
    _set_active(source_id, False)


@sources_app.command("resume")
def sources_resume(source_id: str = typer.Argument(..., help="Source id")) -> None:
    """Resume syncing a paused source."""
    _set_active(source_id, True)


@app.command()
def transcript(
    item_id: str = typer.Argument(..., help="Podcast episode item id"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Transcript text file"),
) -> None:
    """Attach a transcript to an episode; it is preferred over show notes."""
    settings = _load_settings()

    with _pipeline(settings, summaries=False) as pipeline:
        result = pipeline.attach_transcript(item_id, path.read_text(encoding="utf-8"))

    if not result.success:
        console.print(f"[red]✗ {result.message}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ {result.message}[/green]")


@app.command()
def watch(
    hidden: bool = typer.Option(
        False, "--hidden", help="Treat the app as backgrounded: periodic ticks do not sync"
    ),
) -> None:
    """Keep syncing on a schedule until interrupted."""
    settings = _load_settings()

    from rewind.sync.scheduler import SyncScheduler

    with _pipeline(settings) as pipeline:
        scheduler = SyncScheduler.from_settings(
            settings, pipeline.db, sync=lambda: pipeline.run_pass().run
        )
        console.print(
            f"[bold]Watching sources[/bold] "
            f"[dim](tick every {settings.sync_tick_minutes}m, Ctrl+C to stop)[/dim]"
        )
        stop = threading.Event()
        try:
            scheduler.run_forever(stop, visible=lambda: not hidden)
        finally:
            stop.set()


@app.command()
def config() -> None:
    """Verify configuration and show settings."""
    console.print("[bold]Verifying configuration...[/bold]\n")

    console.print("[dim]Config search paths:[/dim]")
    xdg_config = XDG_CONFIG_PATH / "config.env"
    xdg_status = "[green](exists)[/green]" if xdg_config.exists() else "[dim](not found)[/dim]"
    console.print(f"  1. {xdg_config} {xdg_status}")
    local_env = Path(".env")
    local_status = "[green](exists)[/green]" if local_env.exists() else "[dim](not found)[/dim]"
    console.print(f"  2. {local_env.absolute()} {local_status}")
    console.print()

    errors = []
    settings = None

    try:
        settings = get_settings()
        console.print("[green]✓[/green] Settings loaded")
        console.print(f"  LLM API key: {settings.llm_api_key[:10]}...")
        console.print(f"  LLM provider: {settings.llm_provider}")
        console.print(f"  LLM model: {settings.llm_model}")
        console.print(f"  Max retries: {settings.max_retries}")
        console.print(f"  Retry backoff (minutes): {settings.retry_backoff_minutes}")
    except Exception as e:
        errors.append(f"Settings error: {e}")

    console.print()
    if settings is not None:
        try:
            entries = SourcesFile(settings.sources_path).sources
            if entries:
                console.print(f"[green]✓[/green] Sources declared: {len(entries)}")
                for name, entry in list(entries.items())[:5]:
                    console.print(f"  • {name}: {entry.kind.value}")
                if len(entries) > 5:
                    console.print(f"  ... and {len(entries) - 5} more")
            else:
                console.print(f"[dim]No sources declared in {settings.sources_path}[/dim]")
        except ValueError as e:
            errors.append(f"Sources config error: {e}")

        console.print()
        console.print(f"[green]✓[/green] Config dir: {settings.config_dir}")
        console.print(f"[green]✓[/green] Database: {settings.db_path}")
    else:
        console.print(
            "[yellow]⚠ Skipping sources and directory checks (settings not loaded)[/yellow]"
        )

    console.print()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  [red]✗[/red] {error}")
        raise typer.Exit(code=1)
    else:
        console.print("[green]✓ Configuration valid[/green]")


@app.command("cache")
def cache_cmd(
    clear: bool = typer.Option(False, "--clear", help="Clear all cached LLM responses"),
) -> None:
    """Show cache statistics or clear cached responses."""
    settings = _load_settings()

    from rewind.storage.cache import CacheStore

    cache = CacheStore(db_path=settings.db_path, default_ttl_days=settings.cache_ttl_days)

    if clear:
        count = cache.clear()
        console.print(f"[green]Cleared {count} cached entries[/green]")
        return

    stats = cache.stats()
    table = Table(title="Cache Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total entries", str(stats["total_entries"]))
    table.add_row("Expired entries", str(stats["expired_entries"]))
    console.print(table)


def cli() -> None:
    """Entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[dim]Aborted.[/dim]")
        raise SystemExit(130) from None
    except Exception as e:
        console.print(f"\n[red]Unexpected error:[/red] {e}")
        console.print("[dim]Run with --verbose for more details.[/dim]")
        raise SystemExit(1) from e


if __name__ == "__main__":
    cli()
