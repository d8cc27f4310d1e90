"""CLI entry point for Highlight Sync."""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(),
    envvar="HIGHLIGHT_SYNC_DATA_DIR",
    default=None,
    help="Override the default data directory (~/.highlight-sync).",
)
@click.option("--user", "user_id", default=None, help="Act as this user (default: local user).")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, data_dir: str | None, user_id: str | None, verbose: bool) -> None:
    """Highlight Sync - mirror your highlights into a Notion page."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    if data_dir:
        ctx.obj["data_dir"] = data_dir
    if user_id:
        ctx.obj["user_id"] = user_id


def _open(obj: dict):
    from highlight_sync.config import load_config
    from highlight_sync.storage import StorageManager

    config = load_config(**obj)
    return config, StorageManager(config)


@main.command()
@click.option("--api-key", required=True, help="Notion integration token.")
@click.option("--page-id", required=True, help="ID of the Notion page highlights are written to.")
@click.option("--disable", is_flag=True, help="Store the settings but keep sync switched off.")
@click.pass_context
def configure(ctx: click.Context, api_key: str, page_id: str, disable: bool) -> None:
    """Configure the Notion integration."""
    from highlight_sync.models import NotionSettings

    config, storage = _open(ctx.obj)
    storage.save_notion_settings(
        NotionSettings(
            user_id=config.user_id,
            notion_api_key=api_key,
            notion_page_id=page_id,
            enabled=not disable,
        )
    )
    state = "[yellow]disabled[/yellow]" if disable else "[green]enabled[/green]"
    console.print(f"Notion sync {state} for page [cyan]{page_id}[/cyan]")


@main.command()
@click.argument("text", required=False)
@click.option("--html", "html_content", help="Rich HTML content of the highlight.")
@click.option("--source", help="Book or article the highlight comes from.")
@click.option("--author", help="Author of the source.")
@click.option("--sync", "sync_now", is_flag=True, help="Process the Notion queue right away.")
@click.pass_context
def add(
    ctx: click.Context,
    text: str | None,
    html_content: str | None,
    source: str | None,
    author: str | None,
    sync_now: bool,
) -> None:
    """Add a highlight.

    Examples:
      highlight-sync add "Buy milk"
      highlight-sync add --html "<p>Hello <b>world</b></p>"
    """
    from highlight_sync.highlights import HighlightService

    config, storage = _open(ctx.obj)
    service = HighlightService(storage, config)
    try:
        highlight = service.create(config.user_id, text, html_content, source=source, author=author)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        return
    console.print(f"[green]Added[/green] highlight [cyan]{highlight.id}[/cyan]")
    if sync_now:
        asyncio.run(_sync(config, storage))


@main.command()
@click.argument("highlight_id")
@click.option("--text", help="New plain text.")
@click.option("--html", "html_content", help="New HTML content.")
@click.option("--sync", "sync_now", is_flag=True, help="Process the Notion queue right away.")
@click.pass_context
def edit(
    ctx: click.Context,
    highlight_id: str,
    text: str | None,
    html_content: str | None,
    sync_now: bool,
) -> None:
    """Edit a highlight's content."""
    from highlight_sync.highlights import HighlightService

    if text is None and html_content is None:
        console.print("[red]Nothing to change.[/red] Pass --text and/or --html.")
        return

    config, storage = _open(ctx.obj)
    service = HighlightService(storage, config)
    if service.update(highlight_id, config.user_id, text=text, html_content=html_content) is None:
        console.print(f"[red]Highlight {highlight_id} not found.[/red]")
        return
    console.print(f"[green]Updated[/green] highlight [cyan]{highlight_id}[/cyan]")
    if sync_now:
        asyncio.run(_sync(config, storage))


@main.command()
@click.argument("highlight_id")
@click.confirmation_option(prompt="Are you sure you want to delete this highlight?")
@click.pass_context
def delete(ctx: click.Context, highlight_id: str) -> None:
    """Delete a highlight (and, on the next sync, its Notion blocks)."""
    from highlight_sync.highlights import HighlightService

    config, storage = _open(ctx.obj)
    service = HighlightService(storage, config)
    if service.delete(highlight_id, config.user_id):
        console.print(f"[green]Highlight {highlight_id} deleted.[/green]")
    else:
        console.print(f"[red]Highlight {highlight_id} not found.[/red]")


@main.command("list")
@click.option("--all", "include_archived", is_flag=True, help="Include archived highlights.")
@click.pass_context
def list_highlights(ctx: click.Context, include_archived: bool) -> None:
    """List highlights."""
    config, storage = _open(ctx.obj)
    highlights = storage.list_highlights(config.user_id, include_archived=include_archived)

    if not highlights:
        console.print("[dim]No highlights found.[/dim]")
        return

    table = Table(title="Highlights", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Text", max_width=60)
    table.add_column("Source")
    table.add_column("Added", no_wrap=True)

    for h in highlights:
        table.add_row(
            h.id,
            h.text[:60] + ("..." if len(h.text) > 60 else ""),
            h.source or "",
            h.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(highlights)} highlights[/dim]")


async def _sync(config, storage) -> dict:
    from highlight_sync.worker import SyncWorker

    result = await SyncWorker(storage, config).process(config.user_id)
    colour = "red" if result["failed"] else "green"
    console.print(f"[{colour}]{result['message']}[/{colour}]")
    return result


@main.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Process one batch of queued Notion operations."""
    config, storage = _open(ctx.obj)
    asyncio.run(_sync(config, storage))


@main.command()
@click.option("--failed", "show_failed", is_flag=True, help="Also list failed entries and their errors.")
@click.pass_context
def status(ctx: click.Context, show_failed: bool) -> None:
    """Show the Notion sync queue."""
    from highlight_sync.models import SyncStatus
    from highlight_sync.queue import SyncQueue

    config, storage = _open(ctx.obj)
    queue = SyncQueue(storage, config)
    counts = queue.status_counts(config.user_id)

    table = Table(title="Notion sync queue")
    table.add_column("Status")
    table.add_column("Entries", justify="right")
    for name, count in counts.items():
        table.add_row(name.replace("_", " "), str(count))
    console.print(table)

    if show_failed:
        for entry in queue.list_entries(config.user_id, statuses=[SyncStatus.FAILED]):
            console.print(
                f"  [red]{entry.id}[/red] {entry.operation_type.value} "
                f"after {entry.retry_count} attempts: {entry.error_message}"
            )


@main.command("retry-failed")
@click.pass_context
def retry_failed(ctx: click.Context) -> None:
    """Requeue failed Notion operations."""
    from highlight_sync.queue import SyncQueue

    config, storage = _open(ctx.obj)
    count = SyncQueue(storage, config).retry_failed(config.user_id)
    console.print(f"Requeued {count} failed operations.")


@main.command()
@click.option("--interval", type=float, default=None, help="Seconds between runs.")
@click.option("--once", is_flag=True, help="Process one batch and exit.")
@click.pass_context
def worker(ctx: click.Context, interval: float | None, once: bool) -> None:
    """Process the Notion queue on a schedule."""
    from highlight_sync.worker import SyncWorker

    config, storage = _open(ctx.obj)
    sync_worker = SyncWorker(storage, config)
    every = interval if interval is not None else config.worker_interval_seconds
    if not once:
        console.print(f"Processing the Notion queue every {every:g}s. Press Ctrl+C to stop.")
    try:
        asyncio.run(sync_worker.run_loop(config.user_id, interval=every, iterations=1 if once else None))
    except KeyboardInterrupt:
        console.print("Stopped.")


@main.command("import")
@click.pass_context
def import_from_notion(ctx: click.Context) -> None:
    """Import highlights that exist on the Notion page but not locally."""
    asyncio.run(_import(ctx.obj))


async def _import(obj: dict) -> None:
    from highlight_sync.importer import import_highlights
    from highlight_sync.notion import NotionAPIError, NotionClient

    config, storage = _open(obj)
    settings = storage.get_notion_settings(config.user_id)
    if settings is None or not settings.enabled:
        console.print("[yellow]Notion integration not configured.[/yellow] Run `highlight-sync configure`.")
        return

    client = NotionClient.from_settings(config, settings)
    try:
        result = await import_highlights(client, storage, config.user_id, settings.notion_page_id)
    except NotionAPIError as e:
        console.print(f"[red]Import failed:[/red] {e}")
        return
    console.print(
        f"[green]Imported {result['imported']} highlights[/green] "
        f"({result['skipped']} already present)"
    )


@main.command()
@click.option("--host", default=None, help="Host to bind to.")
@click.option("--port", default=None, type=int, help="Port to listen on.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the HTTP API."""
    import uvicorn

    from highlight_sync.config import load_config
    from highlight_sync.web.app import create_app

    config = load_config(**ctx.obj)
    config.ensure_dirs()
    app = create_app(config)
    host = host or config.web_host
    port = port or config.web_port

    console.print(f"Starting Highlight Sync at [bold]http://{host}:{port}[/bold]")
    console.print("Press Ctrl+C to stop.\n")

    uvicorn.run(app, host=host, port=port, log_level="info")
