"""LocalFileSource - files already present under the shared storage root."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from audiomerger.domain.exceptions import AccessDeniedError, NotFoundError
from audiomerger.domain.model import SourceHandle
from audiomerger.sources.base import acquire_in_thread, make_private_dir, private_handle, remove_private_dir
from audiomerger.sources.deadline import Deadline
from audiomerger.sources.paths import canonicalize, reference_to_path_text

__all__ = ["LocalFileSource"]

logger = logging.getLogger(__name__)


class LocalFileSource:
    """Copy a file from the storage root into a private working directory.

    The copy decouples the job from the storage sweep: once acquired, the
    input survives even if the original is deleted mid-merge.

    Args:
        storage_root: Only files under this directory may be read
        work_dir: Parent for private copies (system temp dir when None)
    """

    def __init__(self, storage_root: Path, *, work_dir: Path | None = None) -> None:
        self.storage_root = Path(storage_root)
        self.work_dir = work_dir

    def locate(self, reference: str) -> Path:
        """Canonical path for ``reference``; refuses anything outside the root."""
        root = self.storage_root.expanduser().resolve()
        canonical = canonicalize(root, reference_to_path_text(reference, root))
        if not canonical.inside_root:
            logger.warning("Refused reference outside storage root: %r", reference)
            raise AccessDeniedError.outside_root(reference, self.storage_root)
        return canonical.path

    async def acquire(self, reference: str, deadline: Deadline | None = None) -> SourceHandle:
        path = self.locate(reference)
        return await acquire_in_thread(self._copy_private, path)

    def _copy_private(self, path: Path) -> SourceHandle:
        if not path.is_file():
            raise NotFoundError.missing_file(path)
        if not os.access(path, os.R_OK):
            raise AccessDeniedError.unreadable(path)

        directory = make_private_dir(self.work_dir, "audiomerger_local_")
        target = directory / path.name
        try:
            shutil.copyfile(path, target)
        except FileNotFoundError as exc:
            remove_private_dir(directory)
            raise NotFoundError.missing_file(path) from exc
        except PermissionError as exc:
            remove_private_dir(directory)
            raise AccessDeniedError.unreadable(path, cause=exc) from exc
        except BaseException:
            remove_private_dir(directory)
            raise

        logger.debug("Copied %s to %s", path, target)
        return private_handle(target, directory, label=path.name)
