"""XR Studio CLI - store maintenance and diagnostics."""

import asyncio
import json
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import settings
from .store import DocumentStore, Relations, get_store

app = typer.Typer(
    name="xrstudio",
    help="XR studio document store tools",
    no_args_is_help=True,
)
console = Console()

db_app = typer.Typer(help="Embedded store commands")
app.add_typer(db_app, name="db")


def _run(coro_factory):
    """Run an async command against the process store, closing it afterwards."""

    async def _main():
        store = get_store()
        try:
            await store.initialize()
            return await coro_factory(store)
        finally:
            await store.close()

    return asyncio.run(_main())


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ============================================================================
# DB Commands
# ============================================================================


@db_app.command("init")
def db_init():
    """Create or migrate the store schema."""

    async def _init(store: DocumentStore):
        return store.mode.value

    mode = _run(_init)
    location = str(settings.database_path) if mode == "embedded" else settings.mongodb_database
    console.print(Panel(f"Backend: [cyan]{mode}[/cyan]\nLocation: {location}", title="Store ready"))


@db_app.command("tables")
def db_tables():
    """List tables of the embedded store with their row counts."""
    from .store.schema import describe_tables

    async def _describe(store: DocumentStore):
        if not store.is_embedded:
            return None
        return await describe_tables(store.engine)

    tables = _run(_describe)
    if tables is None:
        console.print("[yellow]Document-database backend active; no SQLite tables.[/yellow]")
        raise typer.Exit(1)

    table = Table(title="Embedded store tables")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Columns")
    for name, info in tables.items():
        table.add_row(name, str(info["rows"]), ", ".join(info["columns"]))
    console.print(table)


@db_app.command("rebuild-relations")
def db_rebuild_relations():
    """Re-create activity-document links from each document's activityIds."""

    async def _rebuild(store: DocumentStore):
        return await Relations(store).rebuild_activity_documents()

    count = _run(_rebuild)
    console.print(f"[green]Ensured {count} activity-document links.[/green]")


# ============================================================================
# Diagnostics
# ============================================================================


@app.command()
def diagnose(activity_id: str = typer.Argument(..., help="Activity id to inspect")):
    """Show how an activity and its documents are stored."""
    from .services.diagnostics_svc import diagnose_activity

    async def _diagnose(store: DocumentStore):
        return await diagnose_activity(store, Relations(store), activity_id)

    info = _run(_diagnose)
    if info["activity"] is None:
        console.print(f"[red]Activity {activity_id} not found[/red]")

    table = Table(title=f"Documents linked to {activity_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Filename")
    table.add_column("URL")
    for doc in info["documents"]:
        table.add_row(doc["_id"], doc.get("filename") or f"[red]{doc.get('error', '')}[/red]", doc.get("url") or "")
    console.print(table)

    if "sqlite" in info:
        console.print_json(json.dumps(info["sqlite"]))


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(f"XR Studio v{__version__}")


if __name__ == "__main__":
    app()
