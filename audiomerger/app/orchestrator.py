"""Merge orchestration: resolve -> analyze -> merge -> deliver -> clean up.

The orchestrator owns the job registry (the per-owner lock) and is the only
component that sequences a job. Every handle a job acquires is released on
every exit path before the owner is unlocked.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import datetime, timedelta
from functools import partial
from typing import Awaitable, Callable

import requests
import structlog

from audiomerger.app.jobs import JobRegistry
from audiomerger.app.progress import MergeProgress
from audiomerger.audio.merge import MergeEngine
from audiomerger.audio.quality import QualityAnalyzer
from audiomerger.config.schema import AppConfig
from audiomerger.domain.constants import MIN_MERGE_ITEMS
from audiomerger.domain.exceptions import (
    DeliveryError,
    InsufficientItemsError,
    JobTimeoutError,
    MergerError,
    NetworkTimeoutError,
    QueueFullError,
)
from audiomerger.domain.model import (
    JobState,
    MergeJob,
    MergeOutcome,
    QualityProfile,
    QueueItem,
    QueueStatus,
    SourceHandle,
    utcnow,
)
from audiomerger.domain.protocols import ProgressCallback
from audiomerger.sessions.store import SessionStore
from audiomerger.sources.deadline import Deadline
from audiomerger.sources.remote import PlatformExtractor
from audiomerger.sources.resolver import SourceResolver
from audiomerger.sources.token import TokenLinkResolver

__all__ = ["DeliverCallback", "Orchestrator"]

logger = structlog.get_logger(__name__)

DeliverCallback = Callable[[SourceHandle, QualityProfile], Awaitable[None]]


class Orchestrator:
    """Facade the messaging collaborator talks to.

    Precondition failures (``QueueFullError``, ``InsufficientItemsError``,
    ``AlreadyInProgressError``) are raised. Failures inside a job come back as
    a ``MergeOutcome`` in state ``FAILED`` with the error attached.

    Example:
        >>> orchestrator.enqueue(42, item_a)
        >>> orchestrator.enqueue(42, item_b)
        >>> outcome = await orchestrator.run_merge(42, deliver=upload)
        >>> outcome.user_message
        '✅ Merge complete.'
    """

    def __init__(
        self,
        store: SessionStore,
        resolver: SourceResolver,
        analyzer: QualityAnalyzer,
        engine: MergeEngine,
        *,
        registry: JobRegistry | None = None,
        merge_timeout_s: float | None = None,
        session_ttl: timedelta = timedelta(hours=24),
        min_items: int = MIN_MERGE_ITEMS,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.analyzer = analyzer
        self.engine = engine
        self.registry = registry or JobRegistry()
        self.merge_timeout_s = merge_timeout_s
        self.session_ttl = session_ttl
        self.min_items = min_items

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: SessionStore,
        *,
        token_resolver: TokenLinkResolver | None = None,
        extractors: Iterable[PlatformExtractor] = (),
        session: requests.Session | None = None,
    ) -> Orchestrator:
        return cls(
            store,
            SourceResolver.from_config(
                config, token_resolver=token_resolver, extractors=extractors, session=session
            ),
            QualityAnalyzer(ffprobe_path=config.ffprobe_path, probe_timeout_s=config.probe_timeout_s),
            MergeEngine(ffmpeg_path=config.ffmpeg_path, threads=config.merge_threads, work_dir=config.work_dir),
            merge_timeout_s=config.merge_timeout_s,
            session_ttl=timedelta(seconds=config.session_ttl_s),
        )

    # ------------------------------------------------------------------
    # Queue facade
    # ------------------------------------------------------------------

    def enqueue(self, owner_id: int, item: QueueItem) -> QueueStatus:
        if not self.store.enqueue(owner_id, item):
            raise QueueFullError.for_owner(owner_id, self.store.capacity)
        return self.store.status(owner_id)

    def status(self, owner_id: int) -> QueueStatus:
        return self.store.status(owner_id)

    def clear(self, owner_id: int) -> None:
        self.store.clear(owner_id)

    def active_job(self, owner_id: int) -> MergeJob | None:
        return self.registry.get(owner_id)

    def evict_idle_sessions(self, now: datetime | None = None) -> int:
        """Evict idle sessions, skipping owners with a job in flight."""
        return self.store.evict_expired(
            now or utcnow(),
            self.session_ttl,
            protected=self.registry.active_owners(),
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def run_merge(
        self,
        owner_id: int,
        *,
        deliver: DeliverCallback | None = None,
        on_progress: ProgressCallback | None = None,
        progress: MergeProgress | None = None,
    ) -> MergeOutcome:
        """Run one merge job for ``owner_id`` to completion or failure.

        Raises:
            InsufficientItemsError: Fewer than two queued items
            AlreadyInProgressError: The owner already has a job running
        """
        status = self.store.status(owner_id)
        if status.count < self.min_items:
            raise InsufficientItemsError.for_owner(owner_id, status.count, self.min_items)

        job = self.registry.claim(owner_id, status.items)
        log = logger.bind(job_id=job.job_id, owner_id=owner_id)
        if progress is None:
            progress = MergeProgress(callback=on_progress) if on_progress else MergeProgress(mode="silent")
        deadline = Deadline.after(self.merge_timeout_s) if self.merge_timeout_s else Deadline.never()

        log.info("Merge started", items=len(job.items))
        started = time.monotonic()
        error: MergerError | None = None
        try:
            try:
                await self._execute(job, deadline, progress, deliver, log)
            except MergerError as exc:
                error = exc
            except Exception as exc:
                error = MergerError(
                    "Unexpected failure during merge",
                    cause=exc,
                    context={"job_id": job.job_id, "state": job.state.value},
                )
            finally:
                self._release_all(job, log)
        finally:
            self.registry.release(job)

        duration = time.monotonic() - started
        if error is not None:
            job.state = JobState.FAILED
            log.error(
                "Merge failed",
                error_type=type(error).__name__,
                error=error.message,
                context=error.context,
                cause=repr(error.cause) if error.cause else None,
            )
        else:
            job.state = JobState.COMPLETED
            log.info("Merge completed", duration_s=round(duration, 2), profile=job.profile.describe() if job.profile else None)

        return MergeOutcome(
            job_id=job.job_id,
            owner_id=owner_id,
            state=job.state,
            item_count=len(job.items),
            profile=job.profile,
            error=error,
            duration_s=duration,
        )

    async def _execute(
        self,
        job: MergeJob,
        deadline: Deadline,
        progress: MergeProgress,
        deliver: DeliverCallback | None,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        total = len(job.items)

        job.state = JobState.RESOLVING
        task = progress.start_resolve(total)
        for index, item in enumerate(job.items, start=1):
            _check_deadline(deadline, "resolve")
            try:
                handle = await self.resolver.acquire(item, deadline)
            except NetworkTimeoutError as exc:
                if deadline.expired:
                    raise JobTimeoutError.exceeded("resolve", deadline.budget_s) from exc
                raise
            job.inputs.append(handle)
            progress.item_acquired(task, index, total, handle.label)
            log.debug("Source acquired", index=index, label=handle.label)
        progress.complete(task)

        job.state = JobState.ANALYZING
        task = progress.start_analyze()
        analysis = await self.analyzer.analyze_inputs([handle.local_path for handle in job.inputs])
        job.profile = analysis.profile
        progress.complete_analyze(task, analysis.profile)
        _check_deadline(deadline, "analyze")

        job.state = JobState.MERGING
        task = progress.start_merge()
        job.output_handle = await self.engine.merge(
            [handle.local_path for handle in job.inputs],
            analysis.profile,
            deadline=deadline,
            on_progress=partial(progress.merge_tick, task),
            total_duration_s=analysis.total_duration_s,
        )
        progress.complete(task)

        job.state = JobState.FINALIZING
        if deliver is not None:
            task = progress.start_deliver()
            try:
                await deliver(job.output_handle, analysis.profile)
            except MergerError:
                raise
            except Exception as exc:
                raise DeliveryError("Delivering the merged file failed", cause=exc) from exc
            progress.complete(task)

        removed = self.store.discard(job.owner_id, job.items)
        log.debug("Queue items consumed", removed=removed)

    @staticmethod
    def _release_all(job: MergeJob, log: structlog.stdlib.BoundLogger) -> None:
        for handle in job.acquired_handles():
            try:
                handle.release()
            except Exception:
                log.exception("Handle release failed", path=str(handle.local_path))


def _check_deadline(deadline: Deadline, stage: str) -> None:
    if deadline.expired:
        raise JobTimeoutError.exceeded(stage, deadline.budget_s)
