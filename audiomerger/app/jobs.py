"""Per-owner job registry: at most one active merge per owner."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from audiomerger.domain.exceptions import AlreadyInProgressError
from audiomerger.domain.model import MergeJob, QueueItem

__all__ = ["JobRegistry"]


class JobRegistry:
    """Owner id -> active ``MergeJob``.

    ``claim`` is the per-owner lock: it either registers a new job or raises
    ``AlreadyInProgressError`` without touching the existing one.
    """

    def __init__(self) -> None:
        self._jobs: dict[int, MergeJob] = {}
        self._lock = threading.Lock()

    def claim(self, owner_id: int, items: Iterable[QueueItem]) -> MergeJob:
        with self._lock:
            existing = self._jobs.get(owner_id)
            if existing is not None:
                raise AlreadyInProgressError.for_owner(owner_id, existing.job_id)
            job = MergeJob(job_id=uuid.uuid4().hex[:12], owner_id=owner_id, items=tuple(items))
            self._jobs[owner_id] = job
            return job

    def release(self, job: MergeJob) -> None:
        with self._lock:
            if self._jobs.get(job.owner_id) is job:
                del self._jobs[job.owner_id]

    @contextmanager
    def hold(self, owner_id: int, items: Iterable[QueueItem]) -> Iterator[MergeJob]:
        job = self.claim(owner_id, items)
        try:
            yield job
        finally:
            self.release(job)

    def get(self, owner_id: int) -> MergeJob | None:
        with self._lock:
            return self._jobs.get(owner_id)

    def is_active(self, owner_id: int) -> bool:
        with self._lock:
            return owner_id in self._jobs

    def active_owners(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
