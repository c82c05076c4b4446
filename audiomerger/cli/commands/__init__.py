"""Composable CLI command registrations for Typer."""

from .maintenance import register_maintenance
from .merge import register_merge
from .queue import register_queue

__all__ = [
    "register_maintenance",
    "register_merge",
    "register_queue",
]
