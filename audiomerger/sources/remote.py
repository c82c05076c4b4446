"""RemoteFileSource - stream a URL to a private file within a deadline."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, Protocol
from urllib.parse import unquote, urlsplit

import requests

from audiomerger.domain.exceptions import (
    AccessDeniedError,
    MergerError,
    NetworkTimeoutError,
    NotFoundError,
    TransportError,
)
from audiomerger.domain.model import SourceHandle
from audiomerger.sources.base import acquire_in_thread, make_private_dir, private_handle, remove_private_dir
from audiomerger.sources.deadline import Deadline

__all__ = ["PlatformExtractor", "RemoteFileSource"]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
CONNECT_TIMEOUT_S = 15.0
_UNSAFE_NAME = re.compile(r"[^\w.\- ]+")


class PlatformExtractor(Protocol):
    """Fetches media from a platform page URL (video sites and the like).

    ``fetch`` runs in a worker thread and must write exactly one file into
    ``destination``, honouring ``deadline``.
    """

    name: str

    def matches(self, url: str) -> bool:
        ...

    def fetch(self, url: str, destination: Path, deadline: Deadline) -> Path:
        ...


def _filename_for(url: str) -> str:
    name = PurePosixPath(unquote(urlsplit(url).path)).name
    name = _UNSAFE_NAME.sub("_", name).strip(" .")
    return name or "download"


class RemoteFileSource:
    """Download http(s) URLs with a bounded total time.

    Args:
        work_dir: Parent for private download directories
        timeout_s: Per-download ceiling, combined with the caller's deadline
        session: ``requests.Session`` to reuse (one is created otherwise)
        extractors: Platform extractors tried before plain HTTP
        chunk_size: Bytes per streamed chunk
    """

    def __init__(
        self,
        *,
        work_dir: Path | None = None,
        timeout_s: float = 300.0,
        session: requests.Session | None = None,
        extractors: Iterable[PlatformExtractor] = (),
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.work_dir = work_dir
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.extractors = list(extractors)
        self.chunk_size = chunk_size

    def extractor_for(self, url: str) -> PlatformExtractor | None:
        for extractor in self.extractors:
            if extractor.matches(url):
                return extractor
        return None

    async def acquire(self, reference: str, deadline: Deadline | None = None) -> SourceHandle:
        effective = Deadline.after(self.timeout_s).earliest(deadline)
        return await acquire_in_thread(self._download, reference, effective)

    def _download(self, url: str, deadline: Deadline) -> SourceHandle:
        directory = make_private_dir(self.work_dir, "audiomerger_dl_")
        try:
            extractor = self.extractor_for(url)
            if extractor is not None:
                logger.info("Fetching %s with %s extractor", url, extractor.name)
                path = self._fetch_with(extractor, url, directory, deadline)
            else:
                path = self._stream_to_file(url, directory / _filename_for(url), deadline)
        except BaseException:
            remove_private_dir(directory)
            raise
        return private_handle(path, directory, label=path.name)

    def _fetch_with(self, extractor: PlatformExtractor, url: str, directory: Path, deadline: Deadline) -> Path:
        try:
            path = extractor.fetch(url, directory, deadline)
        except MergerError:
            raise
        except Exception as exc:
            raise TransportError.for_url(url, cause=exc) from exc
        if deadline.expired:
            raise NetworkTimeoutError.for_url(url, deadline.budget_s)
        if not path.is_file():
            raise TransportError.for_url(url)
        return path

    def _stream_to_file(self, url: str, target: Path, deadline: Deadline) -> Path:
        read_timeout = deadline.timeout()
        connect_timeout = deadline.timeout(CONNECT_TIMEOUT_S)
        written = 0
        try:
            with self.session.get(url, stream=True, timeout=(connect_timeout, read_timeout)) as response:
                self._check_status(url, response)
                expected = response.headers.get("Content-Length")
                with target.open("wb") as fh:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if deadline.expired:
                            raise NetworkTimeoutError.for_url(url, deadline.budget_s)
                        if chunk:
                            fh.write(chunk)
                            written += len(chunk)
        except requests.Timeout as exc:
            raise NetworkTimeoutError.for_url(url, deadline.budget_s, cause=exc) from exc
        except requests.RequestException as exc:
            raise TransportError.for_url(url, cause=exc) from exc

        if expected is not None and expected.isdigit() and written < int(expected):
            raise TransportError(
                "Download ended early",
                context={"url": url, "expected_bytes": int(expected), "received_bytes": written},
            )
        logger.debug("Downloaded %s (%d bytes) to %s", url, written, target)
        return target

    @staticmethod
    def _check_status(url: str, response: requests.Response) -> None:
        status = response.status_code
        if status == 404:
            raise NotFoundError("Remote file not found (HTTP 404)", context={"url": url})
        if status in (401, 403):
            raise AccessDeniedError(f"Remote server refused access (HTTP {status})", context={"url": url})
        if status >= 400:
            raise TransportError.for_url(url, status_code=status)
