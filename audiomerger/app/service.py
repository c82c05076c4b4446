"""MergeService - long-running wiring of store, orchestrator and housekeeping.

Background tasks:
    - snapshot flush every ``snapshot_interval_s`` while the store is dirty
    - idle-session eviction every ``eviction_interval_s``
    - optional storage sweep every ``sweep_interval_hours``

``stop()`` cancels them and writes a final snapshot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

import requests
import structlog

from audiomerger.app.orchestrator import Orchestrator
from audiomerger.config.schema import AppConfig
from audiomerger.maintenance import run_periodic_sweep
from audiomerger.sessions.store import SessionStore
from audiomerger.sources.remote import PlatformExtractor
from audiomerger.sources.token import TokenLinkResolver

__all__ = ["MergeService"]

logger = structlog.get_logger(__name__)


class MergeService:
    """Owns the component graph for one process.

    Example:
        >>> async with MergeService(load_config()) as service:
        ...     service.orchestrator.enqueue(42, item)
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        store: SessionStore | None = None,
        orchestrator: Orchestrator | None = None,
        token_resolver: TokenLinkResolver | None = None,
        extractors: Iterable[PlatformExtractor] = (),
        session: requests.Session | None = None,
        run_sweep: bool = False,
    ) -> None:
        self.config = config
        self.store = store or SessionStore.load(config.sessions_file, capacity=config.queue_capacity)
        self.orchestrator = orchestrator or Orchestrator.from_config(
            config,
            self.store,
            token_resolver=token_resolver,
            extractors=extractors,
            session=session,
        )
        self.run_sweep = run_sweep
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                self._every(self.config.snapshot_interval_s, self._flush), name="snapshot-flush"
            ),
            asyncio.create_task(
                self._every(self.config.eviction_interval_s, self._evict), name="session-eviction"
            ),
        ]
        if self.run_sweep:
            self._tasks.append(
                asyncio.create_task(
                    run_periodic_sweep(
                        self.config.storage_root,
                        self.config.sweep_max_age_hours,
                        self.config.sweep_interval_hours * 3600,
                        stop_event=self._stop_event,
                    ),
                    name="storage-sweep",
                )
            )
        logger.info("Merge service started", sessions=len(self.store), sweep=self.run_sweep)

    async def stop(self) -> None:
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for result in results:
            if isinstance(result, Exception):
                logger.error("Background task failed", error=repr(result))

        await asyncio.to_thread(self.store.close)
        logger.info("Merge service stopped", sessions=len(self.store))

    async def __aenter__(self) -> MergeService:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    async def _every(self, interval_s: float, action: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await action()
            except Exception:
                logger.exception("Periodic task failed", action=getattr(action, "__name__", repr(action)))

    async def _flush(self) -> None:
        if await asyncio.to_thread(self.store.flush_if_dirty):
            logger.debug("Session snapshot saved", sessions=len(self.store))

    async def _evict(self) -> None:
        evicted = self.orchestrator.evict_idle_sessions()
        if evicted:
            logger.info("Idle sessions evicted", count=evicted)
