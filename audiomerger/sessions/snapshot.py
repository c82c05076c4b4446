"""Durable session snapshots.

One human-readable JSON file maps owner id to session record. Writes go to a
temp file in the same directory and are moved into place with ``os.replace``
so a crash mid-write never leaves a truncated snapshot behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Mapping

from pydantic import RootModel, ValidationError

from audiomerger.domain.model import Session

__all__ = ["SessionSnapshot", "read_snapshot", "write_snapshot"]

logger = logging.getLogger(__name__)


class SessionSnapshot(RootModel[dict[int, Session]]):
    """On-disk layout: ``{"<owner_id>": {queue, created_at, last_activity_at, ...}}``."""


def write_snapshot(path: Path, sessions: Mapping[int, Session]) -> Path:
    """Atomically replace ``path`` with the given sessions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = SessionSnapshot(dict(sessions)).model_dump_json(indent=2)

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(str(tmp), str(path))
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return path


def read_snapshot(path: Path) -> dict[int, Session]:
    """Load sessions; a missing or corrupt snapshot yields an empty mapping."""
    if not path.exists():
        return {}

    try:
        raw = path.read_text(encoding="utf-8")
        sessions = SessionSnapshot.model_validate_json(raw).root
    except (OSError, UnicodeDecodeError, ValidationError) as exc:
        logger.warning("Ignoring unreadable session snapshot %s: %s", path, exc)
        return {}

    # Records written by hand may disagree with their key; the key wins.
    return {
        owner_id: session if session.owner_id == owner_id else session.model_copy(update={"owner_id": owner_id})
        for owner_id, session in sessions.items()
    }
