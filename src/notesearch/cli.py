"""CLI entry point for notesearch.

Commands:
    notesearch index   — Full build of the full-text and semantic indexes
    notesearch search  — Merged search across all three sources
    notesearch status  — Show index freshness
    notesearch watch   — Keep the indexes current while notes change
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from notesearch import __version__

if TYPE_CHECKING:
    from notesearch.coordinator import SearchCoordinator
    from notesearch.models import IndexStatus

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _create_coordinator(ctx: click.Context) -> SearchCoordinator:
    from notesearch.config import load_settings
    from notesearch.coordinator import create_coordinator

    settings = load_settings(ctx.obj.get("config_path"))
    if not settings.notes.path.is_dir():
        console.print(f"[red]✗[/red] Note folder not found: {settings.notes.path}")
        sys.exit(1)
    return create_coordinator(settings)


def _print_status(label: str, status: IndexStatus) -> None:
    built = status.last_build.isoformat(timespec="seconds") if status.last_build else "never"
    colour = "yellow" if status.is_stale else "green"
    console.print(f"[bold]{label}:[/bold]")
    console.print(f"  Notes indexed: {status.indexed_count}")
    console.print(f"  Last build: {built}")
    console.print(f"  [{colour}]{status.message}[/{colour}]")


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """notesearch — hybrid search over your notes."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Full build of the full-text and semantic indexes."""
    from notesearch.errors import NoteSearchError

    coordinator = _create_coordinator(ctx)

    with console.status("Building full-text index...") as status:

        def _progress(done: int, total: int) -> None:
            status.update(f"Building full-text index... {done}/{total}")

        try:
            count = coordinator.fulltext.build(progress=_progress)
        except NoteSearchError as exc:
            console.print(f"[red]✗[/red] Full-text build failed: {exc}")
            sys.exit(1)
    console.print(f"[green]✓[/green] Full-text index: {count} notes")

    with console.status("Building semantic index..."):
        try:
            count = coordinator.semantic.build_index(force_rebuild=True)
        except NoteSearchError as exc:
            console.print(f"[yellow]![/yellow] Semantic index skipped: {exc}")
        else:
            console.print(f"[green]✓[/green] Semantic index: {count} notes")


@cli.command()
@click.argument("query", nargs=-1, required=True)
@click.option("-n", "--limit", default=None, type=int, help="Maximum results")
@click.pass_context
def search(ctx: click.Context, query: tuple[str, ...], limit: int | None) -> None:
    """Search notes by title, content, and meaning."""
    from notesearch.errors import NoteStoreUnavailable

    coordinator = _create_coordinator(ctx)
    text = " ".join(query)

    try:
        response = asyncio.run(coordinator.submit(text, limit))
    except NoteStoreUnavailable as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)

    if response.fulltext_rebuilding:
        console.print(
            "[dim]Full-text index is rebuilding; content matches may be incomplete.[/dim]"
        )
    elif response.fulltext_stale:
        console.print("[dim]Full-text index may be stale.[/dim]")

    if not response.results:
        console.print(f"[dim]No results for '{text}'.[/dim]")
    else:
        table = Table(show_header=True, header_style="bold magenta", box=None)
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Folder")
        table.add_column("Source")
        table.add_column("Score", justify="right")
        table.add_column("Snippet", overflow="fold")
        for i, result in enumerate(response.results, start=1):
            table.add_row(
                str(i),
                result.title or result.note_id,
                result.folder or "",
                result.display_source,
                f"{result.score:.0%}",
                result.snippet or "",
            )
        console.print(table)

    # Let a rebuild triggered by this query land on disk before exiting
    coordinator.close(timeout=None)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show index freshness for the full-text and semantic indexes."""
    from notesearch.models import SourceKind

    coordinator = _create_coordinator(ctx)
    statuses = coordinator.status()
    console.print("\n[bold]notesearch status[/bold]\n")
    _print_status("Full-text", statuses[SourceKind.FULLTEXT])
    _print_status("Semantic", statuses[SourceKind.SEMANTIC])


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the note folder and keep the indexes current."""
    from notesearch.config import load_settings
    from notesearch.maintenance import IndexMaintainer
    from notesearch.notes.markdown import MarkdownNoteSource
    from notesearch.notes.watcher import NoteWatcher

    settings = load_settings(ctx.obj.get("config_path"))
    coordinator = _create_coordinator(ctx)

    async def _run() -> None:
        maintainer = IndexMaintainer(
            settings.watch, coordinator, coordinator.source, asyncio.get_running_loop()
        )
        watcher = NoteWatcher(
            MarkdownNoteSource(settings.notes), on_change=maintainer.handle_change
        )
        coordinator.fulltext.rebuild_in_background()
        coordinator.semantic.rebuild_in_background()
        await watcher.run_async()

    console.print(f"[green]✓[/green] Watching {settings.notes.path} (Ctrl+C to stop)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\nStopped.")
    finally:
        coordinator.close()


if __name__ == "__main__":
    cli()
