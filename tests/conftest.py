"""Shared fixtures: fake ffmpeg/ffprobe processes and fake pipeline stages.

No test needs the real binaries. ``FakeProcess`` mimics the parts of
``asyncio.subprocess.Process`` the audio layer uses, and the fake resolver,
analyzer and engine count every handle they hand out so tests can check that
each one is released exactly once.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest

from audiomerger.audio.probe import AudioStreamInfo
from audiomerger.audio.quality import AnalysisResult, aggregate_profile
from audiomerger.domain.model import QualityProfile, QueueItem, SourceHandle, SourceKind


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``.

    Must be created inside a running event loop. With ``hang=True`` the
    process never finishes on its own; only ``kill()`` ends it.
    """

    def __init__(
        self,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        hang: bool = False,
    ) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stderr.feed_data(stderr)
        if not hang:
            self.stdout.feed_eof()
            self.stderr.feed_eof()
        self.returncode: int | None = None
        self.killed = False
        self._final = returncode
        self._hang = hang
        self._finished = asyncio.Event()

    async def wait(self) -> int:
        if self._hang and not self.killed:
            await self._finished.wait()
        if self.returncode is None:
            self.returncode = self._final
        return self.returncode

    async def communicate(self) -> tuple[bytes, bytes]:
        out = await self.stdout.read()
        err = await self.stderr.read()
        await self.wait()
        return out, err

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._finished.set()


@dataclass
class SubprocessRecorder:
    """Replaces ``asyncio.create_subprocess_exec`` and records each command."""

    factory: Callable[[list[str]], FakeProcess]
    commands: list[list[str]] = field(default_factory=list)
    processes: list[FakeProcess] = field(default_factory=list)

    async def __call__(self, *command: str, **kwargs: Any) -> FakeProcess:
        self.commands.append(list(command))
        process = self.factory(list(command))
        self.processes.append(process)
        return process


@pytest.fixture
def fake_subprocess(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[list[str]], FakeProcess]], SubprocessRecorder]:
    """Install a fake ``create_subprocess_exec``; returns a recorder factory."""

    def install(factory: Callable[[list[str]], FakeProcess]) -> SubprocessRecorder:
        recorder = SubprocessRecorder(factory)
        monkeypatch.setattr(asyncio, "create_subprocess_exec", recorder)
        return recorder

    return install


def ffprobe_json(
    *,
    codec: str = "mp3",
    sample_rate: int = 44100,
    channels: int = 2,
    bit_rate: int | None = 128000,
    duration: float | None = 10.0,
) -> bytes:
    stream: dict[str, Any] = {
        "codec_type": "audio",
        "codec_name": codec,
        "sample_rate": str(sample_rate),
        "channels": channels,
    }
    if bit_rate is not None:
        stream["bit_rate"] = str(bit_rate)
    fmt: dict[str, Any] = {}
    if duration is not None:
        fmt["duration"] = str(duration)
    return json.dumps({"streams": [stream], "format": fmt}).encode()


# ----------------------------------------------------------------------
# Pipeline fakes for orchestrator tests
# ----------------------------------------------------------------------


class ReleaseLedger:
    """Counts release calls per handle."""

    def __init__(self) -> None:
        self.calls: dict[str, int] = {}
        self.created: list[SourceHandle] = []

    def handle(self, path: Path, name: str) -> SourceHandle:
        self.calls.setdefault(name, 0)

        def release() -> None:
            self.calls[name] += 1

        handle = SourceHandle(path, release, label=name)
        self.created.append(handle)
        return handle

    @property
    def total(self) -> int:
        return sum(self.calls.values())


class FakeResolver:
    def __init__(self, ledger: ReleaseLedger, *, fail_on: int | None = None, error: Exception | None = None) -> None:
        self.ledger = ledger
        self.fail_on = fail_on
        self.error = error
        self.acquired: list[str] = []

    async def acquire(self, item: QueueItem, deadline: Any = None) -> SourceHandle:
        index = len(self.acquired)
        if self.fail_on is not None and index == self.fail_on:
            raise self.error or RuntimeError("acquire failed")
        self.acquired.append(item.content)
        await asyncio.sleep(0)
        return self.ledger.handle(Path(f"/private/{index}"), f"input-{index}")


class FakeAnalyzer:
    def __init__(self, streams: list[AudioStreamInfo] | None = None) -> None:
        self.streams = streams
        self.seen: list[Path] = []

    async def analyze_inputs(self, paths: list[Path]) -> AnalysisResult:
        self.seen = list(paths)
        streams = self.streams or [AudioStreamInfo("mp3", 44100, 2, 128, 10.0) for _ in paths]
        return AnalysisResult(profile=aggregate_profile(streams), streams=tuple(streams))


class FakeEngine:
    def __init__(
        self,
        ledger: ReleaseLedger,
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.ledger = ledger
        self.error = error
        self.gate = gate
        self.started = False
        self.inputs: list[Path] = []
        self.profile: QualityProfile | None = None

    async def merge(self, inputs: list[Path], profile: QualityProfile, **kwargs: Any) -> SourceHandle:
        self.started = True
        self.inputs = list(inputs)
        self.profile = profile
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        on_progress = kwargs.get("on_progress")
        if on_progress is not None:
            from audiomerger.audio.merge import MergeTick

            on_progress(MergeTick(out_time_s=5.0, elapsed_s=0.1, fraction=0.5))
        return self.ledger.handle(Path("/private/out.mp3"), "output")


def make_item(content: str, kind: SourceKind = SourceKind.REMOTE_URL) -> QueueItem:
    return QueueItem(kind=kind, content=content, label=content.rsplit("/", 1)[-1])


@pytest.fixture
def ledger() -> ReleaseLedger:
    return ReleaseLedger()
