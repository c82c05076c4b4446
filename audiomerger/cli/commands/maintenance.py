from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from audiomerger.cli.helpers import open_orchestrator, state_from
from audiomerger.maintenance import sweep_stale_files

console = Console()


def register_maintenance(app: typer.Typer) -> None:
    @app.command("evict", rich_help_panel="Maintenance")
    def evict_cmd(ctx: typer.Context) -> None:
        """Remove sessions idle for longer than the configured TTL."""
        config = state_from(ctx).config
        with open_orchestrator(config) as orchestrator:
            evicted = orchestrator.evict_idle_sessions()
        console.print(f"Evicted {evicted} idle session(s) (TTL {config.session_ttl_hours:g}h).")

    @app.command("sweep", rich_help_panel="Maintenance")
    def sweep_cmd(
        ctx: typer.Context,
        root: Path | None = typer.Option(None, "--root", metavar="DIR", help="Directory to sweep (default: storage_root)"),
        max_age_hours: float | None = typer.Option(None, "--max-age-hours", min=0.0, help="Delete files older than this"),
    ) -> None:
        """Delete stale files from shared storage."""
        config = state_from(ctx).config
        target = root or config.storage_root
        age = max_age_hours if max_age_hours is not None else config.sweep_max_age_hours
        if not target.is_dir():
            console.print(f"[red]Not a directory: {target}[/red]")
            raise typer.Exit(code=2)

        result = sweep_stale_files(target, age)
        console.print(
            f"Swept {target}: {result.deleted} deleted, {result.failed} failed, "
            f"{result.bytes_freed / (1024 * 1024):.1f} MB freed"
        )
