"""Storage sweep: delete stale files from the shared storage root.

Runs independently of merge jobs. Jobs never read the shared originals after
acquisition (they work on private copies outside the root), so deleting a file
here can never break a job in flight.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
import time
from dataclasses import dataclass
from pathlib import Path

__all__ = ["SweepResult", "run_periodic_sweep", "sweep_stale_files"]

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    bytes_freed: int = 0


def sweep_stale_files(root: Path, max_age_hours: float, *, now: float | None = None) -> SweepResult:
    """Delete regular files under ``root`` not modified for ``max_age_hours``.

    Symlinks are neither followed nor deleted. A file that cannot be inspected
    or removed is logged and skipped.
    """
    result = SweepResult()
    root = Path(root)
    if not root.is_dir():
        logger.warning("Sweep root %s does not exist", root)
        return result

    cutoff = (now if now is not None else time.time()) - max_age_hours * 3600

    def on_walk_error(exc: OSError) -> None:
        result.failed += 1
        logger.warning("Cannot scan %s: %s", exc.filename, exc)

    for dirpath, _dirnames, filenames in os.walk(root, onerror=on_walk_error):
        for name in filenames:
            path = Path(dirpath) / name
            try:
                info = path.lstat()
                if not stat.S_ISREG(info.st_mode):
                    continue
                result.scanned += 1
                if info.st_mtime >= cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                result.failed += 1
                logger.warning("Could not delete %s: %s", path, exc)
                continue
            result.deleted += 1
            result.bytes_freed += info.st_size
            logger.debug("Deleted stale file %s", path)

    logger.info(
        "Sweep of %s: %d deleted, %d failed, %.1f MB freed",
        root,
        result.deleted,
        result.failed,
        result.bytes_freed / (1024 * 1024),
    )
    return result


async def run_periodic_sweep(
    root: Path,
    max_age_hours: float,
    interval_s: float,
    *,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Sweep immediately, then every ``interval_s`` until ``stop_event`` is set."""
    stop_event = stop_event or asyncio.Event()
    while not stop_event.is_set():
        await asyncio.to_thread(sweep_stale_files, root, max_age_hours)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            continue
