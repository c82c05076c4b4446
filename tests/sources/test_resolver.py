"""Tests for SourceResolver: strategy selection, tokens and configuration."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from audiomerger.config.schema import AppConfig
from audiomerger.domain.exceptions import ConfigurationError, InvalidReferenceError, NotFoundError
from audiomerger.domain.model import QueueItem, SourceKind
from audiomerger.sources.local import LocalFileSource
from audiomerger.sources.remote import RemoteFileSource
from audiomerger.sources.resolver import SourceResolver

ENDPOINTS = ["127.0.0.1:8081", "localhost:8081"]
LOCAL_URL = "http://127.0.0.1:8081/file/bot1:A/music/a.mp3"
REMOTE_URL = "https://cdn.example.com/b.mp3"


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    root = tmp_path / "storage"
    (root / "music").mkdir(parents=True)
    (root / "music" / "a.mp3").write_bytes(b"local bytes")
    return root


@pytest.fixture
def session() -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value = response
    response.status_code = 200
    response.headers = {}
    response.iter_content.return_value = [b"remote bytes"]
    mock = MagicMock()
    mock.get.return_value = response
    return mock


def make_resolver(storage: Path, tmp_path: Path, session: MagicMock, token_resolver=None) -> SourceResolver:
    work = tmp_path / "work"
    return SourceResolver(
        LocalFileSource(storage, work_dir=work),
        RemoteFileSource(work_dir=work, session=session),
        local_endpoints=ENDPOINTS,
        token_resolver=token_resolver,
    )


def acquire_bytes(resolver: SourceResolver, item: QueueItem) -> bytes:
    handle = asyncio.run(resolver.acquire(item))
    try:
        return handle.local_path.read_bytes()
    finally:
        handle.release()


class TestStrategySelection:
    def test_local_path(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        item = QueueItem(kind=SourceKind.LOCAL_REFERENCE, content=str(storage / "music" / "a.mp3"))
        assert acquire_bytes(resolver, item) == b"local bytes"
        session.get.assert_not_called()

    def test_declared_remote_but_local_endpoint_reads_locally(
        self, storage: Path, tmp_path: Path, session: MagicMock
    ) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        item = QueueItem(kind=SourceKind.REMOTE_URL, content=LOCAL_URL)
        assert acquire_bytes(resolver, item) == b"local bytes"
        session.get.assert_not_called()

    def test_declared_local_but_remote_url_downloads(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        item = QueueItem(kind=SourceKind.LOCAL_REFERENCE, content=REMOTE_URL)
        assert acquire_bytes(resolver, item) == b"remote bytes"
        session.get.assert_called_once()

    def test_item_label_carried_to_handle(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        item = QueueItem(kind=SourceKind.REMOTE_URL, content=REMOTE_URL, label="Song B")
        handle = asyncio.run(resolver.acquire(item))
        assert handle.label == "Song B"
        handle.release()

    def test_classify_uses_configured_endpoints(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        assert resolver.classify(LOCAL_URL) is SourceKind.LOCAL_REFERENCE
        assert resolver.classify(REMOTE_URL) is SourceKind.REMOTE_URL


class TestOpaqueTokens:
    def test_token_resolved_to_local_endpoint_is_read_locally(
        self, storage: Path, tmp_path: Path, session: MagicMock
    ) -> None:
        seen: list[str] = []

        async def link_for(token: str) -> str:
            seen.append(token)
            return LOCAL_URL

        resolver = make_resolver(storage, tmp_path, session, token_resolver=link_for)
        item = QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="AgADBAAD")
        assert acquire_bytes(resolver, item) == b"local bytes"
        assert seen == ["AgADBAAD"]
        session.get.assert_not_called()

    def test_token_resolved_to_remote_link_is_downloaded(
        self, storage: Path, tmp_path: Path, session: MagicMock
    ) -> None:
        async def link_for(token: str) -> str:
            return f"  {REMOTE_URL}  "

        resolver = make_resolver(storage, tmp_path, session, token_resolver=link_for)
        assert acquire_bytes(resolver, QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="tok")) == b"remote bytes"
        assert session.get.call_args.args[0] == REMOTE_URL

    def test_no_token_resolver(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        resolver = make_resolver(storage, tmp_path, session)
        with pytest.raises(InvalidReferenceError):
            asyncio.run(resolver.acquire(QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="tok")))

    def test_resolver_failure_wrapped(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        async def link_for(token: str) -> str:
            raise RuntimeError("bot api down")

        resolver = make_resolver(storage, tmp_path, session, token_resolver=link_for)
        with pytest.raises(InvalidReferenceError) as excinfo:
            asyncio.run(resolver.acquire(QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="tok")))
        assert isinstance(excinfo.value.cause, RuntimeError)

    def test_resolver_domain_error_passes_through(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        async def link_for(token: str) -> str:
            raise NotFoundError("file expired")

        resolver = make_resolver(storage, tmp_path, session, token_resolver=link_for)
        with pytest.raises(NotFoundError):
            asyncio.run(resolver.acquire(QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="tok")))

    def test_empty_link_rejected(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        async def link_for(token: str) -> str:
            return "   "

        resolver = make_resolver(storage, tmp_path, session, token_resolver=link_for)
        with pytest.raises(InvalidReferenceError):
            asyncio.run(resolver.acquire(QueueItem(kind=SourceKind.OPAQUE_TOKEN, content="tok")))


class TestConstruction:
    def test_work_dir_inside_storage_root_rejected(self, storage: Path) -> None:
        work = storage / "tmp"
        with pytest.raises(ConfigurationError) as excinfo:
            SourceResolver(
                LocalFileSource(storage, work_dir=work),
                RemoteFileSource(work_dir=work, session=MagicMock()),
            )
        assert excinfo.value.context["field"] == "work_dir"

    def test_from_config(self, storage: Path, tmp_path: Path, session: MagicMock) -> None:
        config = AppConfig(
            storage_root=storage,
            work_dir=tmp_path / "work",
            local_endpoints=["files.internal:9000"],
            remote_timeout_s=42.0,
        )
        resolver = SourceResolver.from_config(config, session=session)
        assert resolver.local.storage_root == storage.resolve()
        assert resolver.remote.timeout_s == 42.0
        assert resolver.remote.session is session
        assert resolver.classify("http://files.internal:9000/x.mp3") is SourceKind.LOCAL_REFERENCE
