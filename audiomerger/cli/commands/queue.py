from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from audiomerger.cli.helpers import fail, open_orchestrator, state_from
from audiomerger.domain.exceptions import QueueFullError
from audiomerger.sources.classify import parse_references

console = Console()


def register_queue(app: typer.Typer) -> None:
    @app.command("enqueue", rich_help_panel="Queue")
    def enqueue_cmd(
        ctx: typer.Context,
        owner_id: int = typer.Argument(..., metavar="OWNER", help="Owner (chat user) id"),
        references: list[str] = typer.Argument(..., metavar="REF...", help="Paths or URLs, in merge order"),
    ) -> None:
        """Append references to an owner's queue."""
        config = state_from(ctx).config
        items = parse_references("\n".join(references), local_endpoints=config.local_endpoints)
        if not items:
            console.print("[yellow]Nothing to enqueue[/yellow]")
            raise typer.Exit(code=2)

        with open_orchestrator(config) as orchestrator:
            added = 0
            try:
                for item in items:
                    status = orchestrator.enqueue(owner_id, item)
                    added += 1
                    console.print(f"✅ Added to queue ({status.count}/{config.queue_capacity}): {item.display_name}")
            except QueueFullError as exc:
                console.print(f"❌ Queue full ({config.queue_capacity}). {added} of {len(items)} added.")
                raise fail(console, exc) from exc

    @app.command("status", rich_help_panel="Queue")
    def status_cmd(
        ctx: typer.Context,
        owner_id: int = typer.Argument(..., metavar="OWNER", help="Owner (chat user) id"),
    ) -> None:
        """Show an owner's queue."""
        config = state_from(ctx).config
        with open_orchestrator(config, persist=False) as orchestrator:
            status = orchestrator.status(owner_id)

        if status.count == 0:
            console.print("📭 Queue is empty.")
            return

        table = Table(title=f"Queue for {owner_id} ({status.count}/{config.queue_capacity})")
        table.add_column("#", justify="right")
        table.add_column("Kind")
        table.add_column("Item")
        table.add_column("Added")
        for index, item in enumerate(status.items, start=1):
            table.add_row(
                str(index),
                item.kind.value,
                item.display_name,
                item.enqueued_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)

    @app.command("clear", rich_help_panel="Queue")
    def clear_cmd(
        ctx: typer.Context,
        owner_id: int = typer.Argument(..., metavar="OWNER", help="Owner (chat user) id"),
    ) -> None:
        """Drop an owner's queue."""
        with open_orchestrator(state_from(ctx).config) as orchestrator:
            orchestrator.clear(owner_id)
        console.print("🗑️ Queue cleared.")
