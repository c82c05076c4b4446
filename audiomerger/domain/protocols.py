"""Callback interfaces that let the core report progress without a UI dependency.

The chat collaborator (or the CLI) passes a ``ProgressCallback``; the core
never waits on it and never fails a job because of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

__all__ = [
    "ProgressCallback",
    "ProgressUpdateData",
]


@dataclass(frozen=True)
class ProgressUpdateData:
    """One progress event.

    Attributes:
        stage: "resolve", "analyze", "merge", "deliver" or "info"
        progress: 0.0 to 1.0, or None when indeterminate
        message: Human-readable status line
        elapsed_s: Seconds since the stage started
        remaining_s: Estimated seconds left, if known

    Example:
        >>> update = ProgressUpdateData(stage="merge", progress=0.5, message="Merging...")
        >>> f"{update.stage}: {update.progress:.0%}"
        'merge: 50%'
    """

    stage: str
    progress: float | None
    message: str
    elapsed_s: float | None = None
    remaining_s: float | None = None


ProgressCallback = Callable[[ProgressUpdateData], None]
