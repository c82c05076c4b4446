"""Source protocol and private working directories.

Every acquisition strategy places its file in a fresh directory that belongs
to the job alone. Releasing the handle removes that directory.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Protocol

from audiomerger.domain.model import SourceHandle
from audiomerger.sources.deadline import Deadline

__all__ = [
    "Source",
    "acquire_in_thread",
    "make_private_dir",
    "private_handle",
    "remove_private_dir",
]

logger = logging.getLogger(__name__)


class Source(Protocol):
    """Turn a reference into a locally readable, job-private file."""

    async def acquire(self, reference: str, deadline: Deadline) -> SourceHandle:
        """Return a handle whose release removes everything acquisition created."""
        ...


def make_private_dir(work_dir: Path | None, prefix: str) -> Path:
    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=prefix, dir=str(work_dir) if work_dir else None))


def remove_private_dir(directory: Path) -> None:
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove working directory %s: %s", directory, exc)


def private_handle(path: Path, directory: Path, *, label: str = "") -> SourceHandle:
    """Handle for ``path`` whose release removes ``directory``."""
    return SourceHandle(path, lambda: remove_private_dir(directory), label=label or path.name)


class _Handoff:
    """Passes a handle from a worker thread to the awaiting task.

    Whichever side finishes last releases the handle when the task has
    given up on it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: SourceHandle | None = None
        self._abandoned = False

    def deliver(self, handle: SourceHandle) -> None:
        with self._lock:
            if not self._abandoned:
                self._handle = handle
                return
        logger.info("Releasing %s acquired after cancellation", handle.local_path)
        handle.release()

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.release()


async def acquire_in_thread(func: Callable[..., SourceHandle], *args: Any) -> SourceHandle:
    """Run a blocking acquisition in a worker thread.

    The worker cannot be interrupted. If the awaiting task is cancelled, the
    handle the worker produces is released instead of being left behind.
    """
    handoff = _Handoff()

    def work() -> SourceHandle:
        handle = func(*args)
        handoff.deliver(handle)
        return handle

    try:
        return await asyncio.to_thread(work)
    except asyncio.CancelledError:
        handoff.abandon()
        raise
