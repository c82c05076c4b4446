"""SourceResolver - one entry point from queue item to job-private file."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import requests

from audiomerger.config.schema import AppConfig
from audiomerger.domain.exceptions import ConfigurationError
from audiomerger.domain.model import QueueItem, SourceHandle, SourceKind
from audiomerger.sources.base import Source
from audiomerger.sources.classify import classify_reference
from audiomerger.sources.deadline import Deadline
from audiomerger.sources.local import LocalFileSource
from audiomerger.sources.remote import PlatformExtractor, RemoteFileSource
from audiomerger.sources.token import TokenLinkResolver, resolve_token

__all__ = ["SourceResolver"]

logger = logging.getLogger(__name__)


class SourceResolver:
    """Acquire queue items through the strategy the classification rule selects.

    The declared kind of a path or URL item is not trusted; the reference is
    re-classified on every acquisition. Opaque tokens are first turned into a
    link and then classified the same way.
    """

    def __init__(
        self,
        local: LocalFileSource,
        remote: RemoteFileSource,
        *,
        local_endpoints: Iterable[str] = (),
        token_resolver: TokenLinkResolver | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.local_endpoints = [endpoint.lower() for endpoint in local_endpoints]
        self.token_resolver = token_resolver
        self._strategies: dict[SourceKind, Source] = {
            SourceKind.LOCAL_REFERENCE: local,
            SourceKind.REMOTE_URL: remote,
        }

        work_dir = local.work_dir or remote.work_dir
        if work_dir is not None:
            root = local.storage_root.expanduser().resolve()
            if Path(work_dir).expanduser().resolve().is_relative_to(root):
                raise ConfigurationError.invalid_value(
                    "work_dir", str(work_dir), "must not be inside storage_root"
                )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        token_resolver: TokenLinkResolver | None = None,
        extractors: Iterable[PlatformExtractor] = (),
        session: requests.Session | None = None,
    ) -> SourceResolver:
        local = LocalFileSource(config.storage_root, work_dir=config.work_dir)
        remote = RemoteFileSource(
            work_dir=config.work_dir,
            timeout_s=config.remote_timeout_s,
            session=session,
            extractors=extractors,
        )
        return cls(
            local,
            remote,
            local_endpoints=config.local_endpoints,
            token_resolver=token_resolver,
        )

    def classify(self, reference: str) -> SourceKind:
        return classify_reference(reference, self.local_endpoints)

    async def acquire(self, item: QueueItem, deadline: Deadline | None = None) -> SourceHandle:
        reference = item.content
        if item.kind is SourceKind.OPAQUE_TOKEN:
            reference = await resolve_token(self.token_resolver, reference)

        kind = self.classify(reference)
        logger.debug("Acquiring %s as %s", item.display_name, kind.value)
        handle = await self._strategies[kind].acquire(reference, deadline or Deadline.never())
        if item.label:
            handle.label = item.label
        return handle
