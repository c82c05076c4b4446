"""Core data model: queue items, sessions, handles, quality profiles, jobs."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from audiomerger.domain.exceptions import MergerError

__all__ = [
    "JobState",
    "MergeJob",
    "MergeOutcome",
    "QualityProfile",
    "QueueItem",
    "QueueStatus",
    "Session",
    "SourceHandle",
    "SourceKind",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """How a queued reference is acquired."""

    LOCAL_REFERENCE = "local_reference"
    REMOTE_URL = "remote_url"
    OPAQUE_TOKEN = "opaque_token"


class QueueItem(BaseModel):
    """One queued source reference. Immutable once enqueued."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    content: str = Field(min_length=1)
    label: str = ""
    enqueued_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.label or self.content


class Session(BaseModel):
    """One owner's pending queue.

    Insertion order of ``queue`` is the merge order.
    """

    owner_id: int
    queue: list[QueueItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: datetime) -> None:
        self.last_activity_at = now


@dataclass(frozen=True)
class QueueStatus:
    """Read-only view of a session queue."""

    count: int
    items: tuple[QueueItem, ...] = ()


class SourceHandle:
    """A locally readable file plus its release obligation.

    ``release()`` runs the underlying clean-up at most once, no matter how many
    times it is called or from which thread. If the clean-up raises, the handle
    still counts as released and the error propagates to that first caller.

    Example:
        >>> handle = SourceHandle(Path("/tmp/x.mp3"), lambda: None)
        >>> handle.release()
        >>> handle.released
        True
    """

    __slots__ = ("local_path", "label", "_release", "_released", "_lock")

    def __init__(self, local_path: Path, release: Callable[[], None], *, label: str = "") -> None:
        self.local_path = Path(local_path)
        self.label = label
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._release()

    def __enter__(self) -> SourceHandle:
        return self

    def __exit__(self, *args: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"SourceHandle({str(self.local_path)!r}, {state})"


@dataclass(frozen=True)
class QualityProfile:
    """Negotiated output encoding for one merge job.

    Attributes:
        sample_rate: Output sample rate in Hz
        channel_count: Output channel count
        lossless: Whether the output is lossless
        bitrate_kbps: Target bit rate for lossy output; None when lossless
        container_format: Output container ("flac" or "mp3")
        codec: ffmpeg encoder name
    """

    sample_rate: int
    channel_count: int
    lossless: bool
    bitrate_kbps: int | None
    container_format: str
    codec: str

    def describe(self) -> str:
        if self.lossless:
            return f"{self.container_format} lossless, {self.sample_rate} Hz, {self.channel_count} ch"
        return f"{self.container_format} {self.bitrate_kbps} kbps, {self.sample_rate} Hz, {self.channel_count} ch"

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "channel_count": self.channel_count,
            "lossless": self.lossless,
            "bitrate_kbps": self.bitrate_kbps,
            "container_format": self.container_format,
            "codec": self.codec,
        }


class JobState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    ANALYZING = "analyzing"
    MERGING = "merging"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass
class MergeJob:
    """One end-to-end merge for one owner. Never shared across owners."""

    job_id: str
    owner_id: int
    items: tuple[QueueItem, ...]
    inputs: list[SourceHandle] = field(default_factory=list)
    profile: QualityProfile | None = None
    output_handle: SourceHandle | None = None
    state: JobState = JobState.IDLE
    started_at: datetime = field(default_factory=utcnow)

    def acquired_handles(self) -> list[SourceHandle]:
        """Every handle this job currently owns, inputs first."""
        handles = list(self.inputs)
        if self.output_handle is not None:
            handles.append(self.output_handle)
        return handles


@dataclass(frozen=True)
class MergeOutcome:
    """Terminal result of ``Orchestrator.run_merge``."""

    job_id: str
    owner_id: int
    state: JobState
    item_count: int
    profile: QualityProfile | None = None
    error: MergerError | None = None
    duration_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.COMPLETED

    @property
    def user_message(self) -> str:
        if self.error is not None:
            return self.error.user_message
        return "✅ Merge complete."
