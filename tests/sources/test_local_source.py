"""Tests for LocalFileSource: containment, private copies and release."""

from __future__ import annotations

import asyncio
import os
import shutil
import threading
import time
from pathlib import Path

import pytest

from audiomerger.domain.exceptions import AccessDeniedError, InvalidReferenceError, NotFoundError
from audiomerger.sources.local import LocalFileSource


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    root = tmp_path / "storage"
    (root / "music").mkdir(parents=True)
    (root / "music" / "a.mp3").write_bytes(b"ID3 first file")
    return root


@pytest.fixture
def source(storage: Path, tmp_path: Path) -> LocalFileSource:
    return LocalFileSource(storage, work_dir=tmp_path / "work")


class TestLocate:
    def test_relative_reference(self, source: LocalFileSource, storage: Path) -> None:
        assert source.locate("music/a.mp3") == storage.resolve() / "music" / "a.mp3"

    def test_file_endpoint_url(self, source: LocalFileSource, storage: Path) -> None:
        url = "http://127.0.0.1:8081/file/bot42:TOKEN/music/a.mp3"
        assert source.locate(url) == storage.resolve() / "music" / "a.mp3"

    def test_local_mode_url_with_absolute_path(self, source: LocalFileSource, storage: Path) -> None:
        url = f"http://localhost:8081/file/bot42:TOKEN/{storage.resolve()}/music/a.mp3"
        assert source.locate(url) == storage.resolve() / "music" / "a.mp3"

    @pytest.mark.parametrize(
        "reference",
        [
            "../../etc/passwd",
            "%2e%2e/%2e%2e/etc/passwd",
            "%252e%252e%252f%252e%252e%252fetc%252fpasswd",
            "..\\..\\etc\\passwd",
            "/etc/passwd",
            "http://127.0.0.1:8081/file/bot42:TOKEN/../../../etc/passwd",
        ],
    )
    def test_traversal_refused(self, source: LocalFileSource, reference: str) -> None:
        with pytest.raises(AccessDeniedError) as excinfo:
            source.locate(reference)
        assert "storage_root" in excinfo.value.context

    def test_nul_byte_refused(self, source: LocalFileSource) -> None:
        with pytest.raises(InvalidReferenceError):
            source.locate("music/a.mp3%00")


class TestAcquire:
    def test_copies_into_private_directory(self, source: LocalFileSource, storage: Path, tmp_path: Path) -> None:
        handle = asyncio.run(source.acquire("music/a.mp3"))
        assert handle.local_path.read_bytes() == b"ID3 first file"
        assert handle.local_path.parent.parent == tmp_path / "work"
        assert handle.label == "a.mp3"
        # The original is untouched
        assert (storage / "music" / "a.mp3").exists()

    def test_copy_survives_deletion_of_original(self, source: LocalFileSource, storage: Path) -> None:
        handle = asyncio.run(source.acquire("music/a.mp3"))
        (storage / "music" / "a.mp3").unlink()
        assert handle.local_path.read_bytes() == b"ID3 first file"

    def test_release_removes_private_directory(self, source: LocalFileSource) -> None:
        handle = asyncio.run(source.acquire("music/a.mp3"))
        directory = handle.local_path.parent
        handle.release()
        assert not directory.exists()
        handle.release()

    def test_each_acquisition_is_private(self, source: LocalFileSource) -> None:
        first = asyncio.run(source.acquire("music/a.mp3"))
        second = asyncio.run(source.acquire("music/a.mp3"))
        assert first.local_path != second.local_path
        first.release()
        assert second.local_path.exists()
        second.release()

    def test_missing_file(self, source: LocalFileSource, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(source.acquire("music/missing.mp3"))
        assert not (tmp_path / "work").exists()

    def test_directory_is_not_a_file(self, source: LocalFileSource) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(source.acquire("music"))

    @pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root can read anything")
    def test_unreadable_file(self, source: LocalFileSource, storage: Path) -> None:
        target = storage / "music" / "a.mp3"
        target.chmod(0)
        try:
            with pytest.raises(AccessDeniedError):
                asyncio.run(source.acquire("music/a.mp3"))
        finally:
            target.chmod(0o644)

    def test_outside_root_never_copied(self, source: LocalFileSource, tmp_path: Path) -> None:
        secret = tmp_path / "secret.txt"
        secret.write_text("top secret")
        with pytest.raises(AccessDeniedError):
            asyncio.run(source.acquire(str(secret)))
        assert not (tmp_path / "work").exists()

    def test_cancelled_acquisition_leaves_no_copy(
        self, source: LocalFileSource, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_copy = shutil.copyfile
        copying = threading.Event()

        def slow_copy(src, dst):
            copying.set()
            time.sleep(0.3)
            return real_copy(src, dst)

        monkeypatch.setattr(shutil, "copyfile", slow_copy)

        async def scenario() -> None:
            task = asyncio.create_task(source.acquire("music/a.mp3"))
            await asyncio.to_thread(copying.wait, 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        # asyncio.run joins the worker thread before returning
        asyncio.run(scenario())
        assert list((tmp_path / "work").iterdir()) == []
