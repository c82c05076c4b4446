from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import typer
from rich.console import Console

from audiomerger.app.orchestrator import Orchestrator
from audiomerger.app.progress import MergeProgress
from audiomerger.cli.helpers import fail, open_orchestrator, state_from
from audiomerger.domain.exceptions import MergerError
from audiomerger.domain.model import MergeOutcome, QualityProfile, SourceHandle

console = Console()


def _output_target(output: Path, handle: SourceHandle, profile: QualityProfile) -> Path:
    if output.is_dir():
        return output / handle.label
    return output.with_suffix(f".{profile.container_format}")


async def _run(orchestrator: Orchestrator, owner_id: int, output: Path, quiet: bool) -> tuple[MergeOutcome, Path | None]:
    delivered: list[Path] = []

    async def deliver(handle: SourceHandle, profile: QualityProfile) -> None:
        target = _output_target(output, handle, profile)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, handle.local_path, target)
        delivered.append(target)

    with MergeProgress(mode="silent" if quiet else "rich") as progress:
        outcome = await orchestrator.run_merge(owner_id, deliver=deliver, progress=progress)
    return outcome, delivered[0] if delivered else None


def register_merge(app: typer.Typer) -> None:
    @app.command("merge", rich_help_panel="Merge")
    def merge_cmd(
        ctx: typer.Context,
        owner_id: int = typer.Argument(..., metavar="OWNER", help="Owner (chat user) id"),
        output: Path = typer.Option(
            ...,
            "--output",
            "-o",
            metavar="PATH",
            help="Output file or directory (extension follows the negotiated format)",
        ),
        quiet: bool = typer.Option(False, "--quiet", "-q", help="No progress display"),
    ) -> None:
        """Merge an owner's queue into one file."""
        config = state_from(ctx).config
        with open_orchestrator(config) as orchestrator:
            try:
                outcome, target = asyncio.run(_run(orchestrator, owner_id, output, quiet))
            except MergerError as exc:
                console.print(exc.user_message)
                raise fail(console, exc) from exc

        if not outcome.succeeded:
            console.print(outcome.user_message)
            if outcome.error is not None:
                raise fail(console, outcome.error)
            raise typer.Exit(code=1)

        console.print(outcome.user_message)
        if outcome.profile is not None:
            console.print(f"  Format: {outcome.profile.describe()}")
        console.print(f"  Items: {outcome.item_count}, took {outcome.duration_s:.1f}s")
        if target is not None:
            console.print(f"  Saved: {target}")
