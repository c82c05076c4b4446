"""Shared plumbing for CLI commands."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import typer
from rich.console import Console

from audiomerger.app.orchestrator import Orchestrator
from audiomerger.config.schema import AppConfig
from audiomerger.domain.exceptions import MergerError
from audiomerger.sessions.store import SessionStore


@dataclass
class CliState:
    """Per-invocation state stored on ``typer.Context.obj``."""
    config: AppConfig


def state_from(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        raise typer.BadParameter("CLI state not initialised")
    return ctx.obj


@contextmanager
def open_orchestrator(config: AppConfig, *, persist: bool = True) -> Iterator[Orchestrator]:
    """Load the session snapshot, yield an orchestrator, then save the snapshot."""
    store = SessionStore.load(config.sessions_file, capacity=config.queue_capacity)
    try:
        yield Orchestrator.from_config(config, store)
    finally:
        if persist:
            store.close()


def fail(console: Console, error: MergerError, code: int = 1) -> typer.Exit:
    """Print ``error`` and return the Exit to raise."""
    console.print(error.format_rich())
    return typer.Exit(code=code)
