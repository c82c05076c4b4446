"""Progress tracking for merge jobs.

One abstraction serves both the chat collaborator and the terminal:

Modes:
    - rich: Rich progress bars (CLI default)
    - callback: ``ProgressUpdateData`` events handed to a callback (chat layer)
    - silent: No output (service without a listener, tests)

Progress is observational. A failing callback is logged and ignored; it can
never fail or stall the job it reports on.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Literal

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from audiomerger.domain.protocols import ProgressUpdateData

if TYPE_CHECKING:
    from audiomerger.audio.merge import MergeTick
    from audiomerger.domain.model import QualityProfile
    from audiomerger.domain.protocols import ProgressCallback

__all__ = [
    "CallbackProgressTracker",
    "MergeProgress",
    "NullProgressTracker",
    "ProgressTracker",
    "RichProgressTracker",
]

logger = logging.getLogger(__name__)


class ProgressTracker(ABC):
    """Abstract base for progress tracking across UI contexts."""

    @abstractmethod
    def add_step(self, description: str, total: int | None = None, *, stage: str = "info") -> Any:
        """Add a progress step. Returns a task ID for updates."""
        ...

    @abstractmethod
    def update(self, task_id: Any, *, description: str | None = None, completed: int | None = None) -> None:
        ...

    @abstractmethod
    def complete(self, task_id: Any) -> None:
        ...

    @abstractmethod
    def print(self, message: str, *, style: str | None = None) -> None:
        """Print a message without disrupting progress display."""
        ...

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, *args: object) -> None:
        return None


class NullProgressTracker(ProgressTracker):
    """No-op tracker."""

    def add_step(self, description: str, total: int | None = None, *, stage: str = "info") -> Any:
        return None

    def update(self, task_id: Any, *, description: str | None = None, completed: int | None = None) -> None:
        pass

    def complete(self, task_id: Any) -> None:
        pass

    def print(self, message: str, *, style: str | None = None) -> None:
        pass


class _CallbackTaskState:
    __slots__ = ("stage", "description", "total", "completed", "start_time")

    def __init__(self, stage: str, description: str, total: int | None) -> None:
        self.stage = stage
        self.description = description
        self.total = total
        self.completed = 0
        self.start_time = time.monotonic()


class CallbackProgressTracker(ProgressTracker):
    """Forward every step change to a callback as ``ProgressUpdateData``.

    Example:
        >>> events = []
        >>> tracker = CallbackProgressTracker(events.append)
        >>> task = tracker.add_step("Merging...", total=100, stage="merge")
        >>> tracker.update(task, completed=50)
        >>> events[-1].progress
        0.5
    """

    def __init__(self, callback: ProgressCallback) -> None:
        if callback is None:
            raise ValueError("callback parameter required for CallbackProgressTracker")
        self._callback = callback
        self._task_counter = 0
        self._active_tasks: dict[str, _CallbackTaskState] = {}

    def _emit(self, update: ProgressUpdateData) -> None:
        try:
            self._callback(update)
        except Exception:
            logger.warning("Progress callback raised; ignoring", exc_info=True)

    def _progress_of(self, state: _CallbackTaskState) -> float | None:
        if state.total and state.total > 0:
            return min(1.0, state.completed / state.total)
        return None

    def add_step(self, description: str, total: int | None = None, *, stage: str = "info") -> str:
        self._task_counter += 1
        task_id = f"callback-task-{self._task_counter}"
        self._active_tasks[task_id] = _CallbackTaskState(stage, description, total)
        self._emit(
            ProgressUpdateData(
                stage=stage,
                progress=0.0 if total else None,
                message=description,
                elapsed_s=0.0,
            )
        )
        return task_id

    def update(self, task_id: Any, *, description: str | None = None, completed: int | None = None) -> None:
        state = self._active_tasks.get(task_id)
        if state is None:
            return
        if description:
            state.description = description
        if completed is not None:
            state.completed = completed

        elapsed = time.monotonic() - state.start_time
        progress = self._progress_of(state)
        remaining = None
        if progress and 0 < progress < 1:
            remaining = elapsed * (1 - progress) / progress

        self._emit(
            ProgressUpdateData(
                stage=state.stage,
                progress=progress,
                message=state.description,
                elapsed_s=elapsed,
                remaining_s=remaining,
            )
        )

    def complete(self, task_id: Any) -> None:
        state = self._active_tasks.pop(task_id, None)
        if state is None:
            return
        self._emit(
            ProgressUpdateData(
                stage=state.stage,
                progress=1.0,
                message=state.description,
                elapsed_s=time.monotonic() - state.start_time,
            )
        )

    def print(self, message: str, *, style: str | None = None) -> None:
        current_stage = "info"
        if self._active_tasks:
            current_stage = next(iter(self._active_tasks.values())).stage
        self._emit(ProgressUpdateData(stage=current_stage, progress=None, message=message))


class RichProgressTracker(ProgressTracker):
    """Rich spinners and bars for the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._progress: Progress | None = None

    def _ensure_started(self) -> Progress:
        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(bar_width=40),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=self._console,
                expand=False,
            )
            self._progress.start()
        return self._progress

    def __enter__(self) -> RichProgressTracker:
        self._ensure_started()
        return self

    def __exit__(self, *args: object) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def add_step(self, description: str, total: int | None = None, *, stage: str = "info") -> Any:
        return self._ensure_started().add_task(description, total=total)

    def update(self, task_id: Any, *, description: str | None = None, completed: int | None = None) -> None:
        if task_id is None or self._progress is None:
            return
        if description is not None:
            self._progress.update(task_id, description=description)
        if completed is not None:
            self._progress.update(task_id, completed=completed)

    def complete(self, task_id: Any) -> None:
        if task_id is None or self._progress is None:
            return
        task = next((t for t in self._progress.tasks if t.id == task_id), None)
        total = task.total if task is not None and task.total else 1
        self._progress.update(task_id, total=total, completed=total)

    def print(self, message: str, *, style: str | None = None) -> None:
        self._console.print(message, style=style)


class MergeProgress:
    """Semantic progress steps for one merge job.

    Example:
        >>> with MergeProgress(mode="callback", callback=print_update) as progress:
        ...     task = progress.start_resolve(3)
        ...     progress.item_acquired(task, 1, 3, "intro.mp3")
    """

    def __init__(
        self,
        tracker: ProgressTracker | None = None,
        *,
        mode: Literal["rich", "callback", "silent"] | None = None,
        callback: ProgressCallback | None = None,
    ) -> None:
        if tracker is not None:
            self._tracker = tracker
        elif mode == "callback" or (mode is None and callback is not None):
            if callback is None:
                raise ValueError("callback parameter required when mode='callback'")
            self._tracker = CallbackProgressTracker(callback)
        elif mode == "rich":
            self._tracker = RichProgressTracker()
        else:
            self._tracker = NullProgressTracker()

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    def __enter__(self) -> MergeProgress:
        self._tracker.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        self._tracker.__exit__(*args)

    def start_resolve(self, total: int) -> Any:
        return self._tracker.add_step(f"Fetching {total} files...", total=total, stage="resolve")

    def item_acquired(self, task_id: Any, index: int, total: int, label: str) -> None:
        self._tracker.update(task_id, description=f"Fetched {index}/{total}: {label}", completed=index)

    def start_analyze(self) -> Any:
        return self._tracker.add_step("Analyzing audio quality...", total=None, stage="analyze")

    def complete_analyze(self, task_id: Any, profile: QualityProfile) -> None:
        self._tracker.update(task_id, description=f"Output: {profile.describe()}")
        self._tracker.complete(task_id)

    def start_merge(self) -> Any:
        return self._tracker.add_step("Merging...", total=100, stage="merge")

    def merge_tick(self, task_id: Any, tick: MergeTick) -> None:
        if tick.fraction is None:
            self._tracker.update(task_id, description=f"Merging... {tick.out_time_s:.0f}s written")
            return
        self._tracker.update(
            task_id,
            description=f"Merging... {tick.fraction:.0%}",
            completed=int(tick.fraction * 100),
        )

    def start_deliver(self) -> Any:
        return self._tracker.add_step("Delivering merged file...", total=None, stage="deliver")

    def complete(self, task_id: Any) -> None:
        self._tracker.complete(task_id)

    def print(self, message: str, *, style: str | None = None) -> None:
        self._tracker.print(message, style=style)
