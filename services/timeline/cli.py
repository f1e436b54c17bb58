"""
CLI interface for the repository timeline service.

Provides commands for:
- Running the HTTP service
- Manual sync cycles
- Cache inspection and clearing
- Configuration validation

Usage Examples:
    # Start the service
    python -m services.timeline.cli serve --port 8787

    # Sync one repository and show what was stored
    python -m services.timeline.cli sync facebook/react --verbose

    # Inspect the edge cache
    python -m services.timeline.cli status facebook/react
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Config
from .models import ChangeKind
from .store import TimelineStore
from .utils import TimelineError, make_repo_key, setup_logging, split_repo_key

app = typer.Typer(
    name="timeline",
    help="Repository Timeline edge service CLI",
    add_completion=False,
)

console = Console()


def _load_config(config_path: Optional[Path]) -> Config:
    try:
        return Config.load(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)


def _parse_repo(value: str) -> tuple[str, str]:
    try:
        return split_repo_key(value)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# =============================================================================
# Service Commands
# =============================================================================

@app.command("serve")
def serve(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
):
    """Run the HTTP service with background refreshes."""
    import uvicorn

    from .server import create_app

    config = _load_config(config_path)
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)

    console.print(Panel(
        f"[green]Repository Timeline Service[/green]\n\n"
        f"Listening: http://{config.server.host}:{config.server.port}\n"
        f"Store: {config.cache.path}\n"
        f"Tokens: {len(config.github.tokens)}\n"
        f"Staleness: {config.cache.staleness_seconds}s",
        box=box.ROUNDED,
    ))

    uvicorn.run(create_app(config=config), host=config.server.host, port=config.server.port)


@app.command("sync")
def sync_repo(
    repo: str = typer.Argument(..., help="Repository as owner/name"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
    mode: Optional[ChangeKind] = typer.Option(
        None,
        "--mode", "-m",
        help="Change kind for a first sync",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
):
    """Run one synchronous sync cycle for a repository."""
    from .service import EdgeCacheService

    setup_logging(level="DEBUG" if verbose else "INFO", log_file=None, verbose=not verbose)
    config = _load_config(config_path)
    owner, name = _parse_repo(repo)
    config.scheduler.enabled = False

    try:
        service = EdgeCacheService.from_config(config)
        result = service.engine.sync_repo(owner, name, mode=mode)
    except TimelineError as e:
        console.print(f"[red]Sync failed ({e.kind}): {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[green]Sync Complete[/green]\n\n"
        f"Repository: {result.repo_key}\n"
        f"Mode: {result.mode.value}\n"
        f"Fetched: {len(result.records)}\n"
        f"New: {result.inserted}\n"
        f"More available: {'yes' if result.has_more else 'no'}\n"
        f"Duration: {result.duration_seconds:.2f}s",
        title="Sync Results",
        box=box.ROUNDED,
    ))


# =============================================================================
# Cache Commands
# =============================================================================

@app.command("status")
def show_status(
    repo: str = typer.Argument(..., help="Repository as owner/name"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
):
    """Show what the edge store holds for a repository."""
    setup_logging(level="WARNING", log_file=None)
    config = _load_config(config_path)
    owner, name = _parse_repo(repo)
    repo_key = make_repo_key(owner, name)

    store = TimelineStore(config.cache.path)
    state = store.get_sync_state(repo_key)
    if state is None:
        console.print(f"[yellow]No cache for {repo_key}[/yellow]")
        raise typer.Exit(0)

    first, last = store.get_change_bounds(repo_key)

    table = Table(title=f"Cache: {repo_key}", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Mode", state.mode.value)
    table.add_row("Default branch", state.default_branch)
    table.add_row("Cached changes", str(store.count_changes(repo_key)))
    table.add_row("Last external id", state.last_external_id or "-")
    table.add_row("Last synced", state.last_synced_at.strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("First change", first.isoformat() if first else "-")
    table.add_row("Last change", last.isoformat() if last else "-")

    console.print(table)


@app.command("stats")
def cache_stats(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
):
    """Show edge store statistics."""
    setup_logging(level="WARNING", log_file=None)
    config = _load_config(config_path)

    store = TimelineStore(config.cache.path)
    stats = store.get_stats()

    table = Table(title="Store Statistics", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Repositories", str(stats["repo_count"]))
    table.add_row("Changes cached", str(stats["change_count"]))
    table.add_row("File diffs cached", str(stats["file_diff_count"]))
    table.add_row("Database size", f"{stats['db_size_bytes'] / 1024:.1f} KB")

    console.print(table)

    repos = store.list_repos()
    if repos:
        repo_table = Table(title="Repositories", box=box.ROUNDED)
        repo_table.add_column("Repository", style="cyan")
        repo_table.add_column("Mode")
        repo_table.add_column("Last synced", style="green")
        for state in repos:
            repo_table.add_row(
                state.repo_key,
                state.mode.value,
                state.last_synced_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(repo_table)


@app.command("clear")
def cache_clear(
    repo: str = typer.Argument(..., help="Repository as owner/name"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
    force: bool = typer.Option(
        False,
        "--force", "-f",
        help="Skip confirmation",
    ),
):
    """Clear cached data for a repository."""
    setup_logging(level="WARNING", log_file=None)
    config = _load_config(config_path)
    owner, name = _parse_repo(repo)
    repo_key = make_repo_key(owner, name)

    if not force and not typer.confirm(f"Clear cache for {repo_key}?"):
        console.print("[blue]Cancelled[/blue]")
        raise typer.Exit(0)

    store = TimelineStore(config.cache.path)
    if store.clear_repo(repo_key):
        console.print(f"[green]Cache cleared for {repo_key}[/green]")
    else:
        console.print(f"[yellow]Nothing cached for {repo_key}[/yellow]")


@app.command("validate-config")
def validate_config(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to timeline_config.yaml",
    ),
):
    """Validate configuration file."""
    config = _load_config(config_path)
    errors = config.validate()

    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)

    console.print("[green]✓ Configuration is valid[/green]")
    console.print(f"\n{len(config.github.tokens)} token(s), store at {config.cache.path}")


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
