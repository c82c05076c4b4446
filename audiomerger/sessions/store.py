"""Per-owner ordered queues with debounced durable snapshots.

The store is the only writer of the snapshot file. Mutations mark it dirty;
``flush_if_dirty()`` (driven by the service's interval loop) and ``close()``
persist it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from audiomerger.domain.constants import DEFAULT_QUEUE_CAPACITY
from audiomerger.domain.model import QueueItem, QueueStatus, Session, utcnow
from audiomerger.sessions.snapshot import read_snapshot, write_snapshot

__all__ = ["SessionStore"]

logger = logging.getLogger(__name__)


class SessionStore:
    """Thread-safe registry of sessions keyed by owner id.

    Args:
        snapshot_path: Where snapshots are written; None keeps the store in memory
        capacity: Maximum queue length per owner
        clock: Returns the current UTC time (injectable for tests)

    Example:
        >>> store = SessionStore(None)
        >>> store.enqueue(42, QueueItem(kind=SourceKind.REMOTE_URL, content="https://x/a.mp3"))
        True
        >>> store.status(42).count
        1
    """

    def __init__(
        self,
        snapshot_path: Path | None = None,
        *,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
        clock: Callable[[], datetime] = utcnow,
        sessions: dict[int, Session] | None = None,
    ) -> None:
        self.snapshot_path = snapshot_path
        self.capacity = capacity
        self._clock = clock
        self._sessions: dict[int, Session] = dict(sessions or {})
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._dirty = False

    @classmethod
    def load(
        cls,
        snapshot_path: Path,
        *,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
        clock: Callable[[], datetime] = utcnow,
    ) -> SessionStore:
        """Create a store from the snapshot at ``snapshot_path`` (empty if missing/corrupt)."""
        sessions = read_snapshot(snapshot_path)
        if sessions:
            logger.info("Loaded %d sessions from %s", len(sessions), snapshot_path)
        return cls(snapshot_path, capacity=capacity, clock=clock, sessions=sessions)

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def enqueue(self, owner_id: int, item: QueueItem) -> bool:
        """Append ``item``; False (queue unchanged) when the queue is full."""
        with self._lock:
            now = self._clock()
            session = self._sessions.get(owner_id)
            if session is None:
                session = Session(owner_id=owner_id, created_at=now, last_activity_at=now)
                self._sessions[owner_id] = session

            if len(session.queue) >= self.capacity:
                return False

            session.queue.append(item.model_copy(update={"enqueued_at": now}))
            session.touch(now)
            self._dirty = True
            return True

    def status(self, owner_id: int) -> QueueStatus:
        with self._lock:
            session = self._sessions.get(owner_id)
            if session is None:
                return QueueStatus(count=0)
            return QueueStatus(count=len(session.queue), items=tuple(session.queue))

    def clear(self, owner_id: int) -> None:
        """Empty the owner's queue; the session itself is destroyed."""
        with self._lock:
            if self._sessions.pop(owner_id, None) is not None:
                self._dirty = True

    def discard(self, owner_id: int, items: Iterable[QueueItem]) -> int:
        """Remove merged items, keeping anything enqueued since.

        The session is destroyed once its queue is empty. Returns the number of
        items removed.
        """
        with self._lock:
            session = self._sessions.get(owner_id)
            if session is None:
                return 0

            pending = list(items)
            kept: list[QueueItem] = []
            for queued in session.queue:
                if queued in pending:
                    pending.remove(queued)
                else:
                    kept.append(queued)

            removed = len(session.queue) - len(kept)
            if not kept:
                del self._sessions[owner_id]
            else:
                session.queue = kept
                session.touch(self._clock())
            self._dirty = True
            return removed

    def get(self, owner_id: int) -> Session | None:
        """Deep copy of the owner's session, if any."""
        with self._lock:
            session = self._sessions.get(owner_id)
            return session.model_copy(deep=True) if session is not None else None

    def owners(self) -> list[int]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, owner_id: object) -> bool:
        with self._lock:
            return owner_id in self._sessions

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict_expired(
        self,
        now: datetime,
        ttl: timedelta,
        *,
        protected: Collection[int] = (),
    ) -> int:
        """Remove sessions idle for longer than ``ttl``.

        Owners in ``protected`` (those with an in-flight job) are never removed.
        """
        threshold = now - ttl
        with self._lock:
            expired = [
                owner_id
                for owner_id, session in self._sessions.items()
                if session.last_activity_at < threshold and owner_id not in protected
            ]
            for owner_id in expired:
                del self._sessions[owner_id]
            if expired:
                self._dirty = True

        if expired:
            logger.info("Evicted %d idle sessions", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> bool:
        """Write a snapshot now. Returns False for in-memory stores."""
        if self.snapshot_path is None:
            self._dirty = False
            return False

        with self._write_lock:
            with self._lock:
                sessions = {owner_id: s.model_copy(deep=True) for owner_id, s in self._sessions.items()}
                self._dirty = False
            try:
                write_snapshot(self.snapshot_path, sessions)
            except OSError:
                self._dirty = True
                raise
        logger.debug("Saved %d sessions to %s", len(sessions), self.snapshot_path)
        return True

    def flush_if_dirty(self) -> bool:
        if not self._dirty:
            return False
        return self.flush()

    def close(self) -> None:
        """Final snapshot on shutdown."""
        self.flush()
