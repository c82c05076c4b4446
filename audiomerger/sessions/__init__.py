"""Per-owner queues and their durable snapshot."""

from .snapshot import SessionSnapshot, read_snapshot, write_snapshot
from .store import SessionStore

__all__ = [
    "SessionSnapshot",
    "SessionStore",
    "read_snapshot",
    "write_snapshot",
]
