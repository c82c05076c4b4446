"""CLI tests: queue commands, merge with a fake ffmpeg, maintenance."""
from __future__ import annotations

import os
import time
from pathlib import Path

import pytest
from typer.testing import CliRunner

from audiomerger.cli.main import app
from conftest import FakeProcess, ffprobe_json

runner = CliRunner()


@pytest.fixture
def setup(tmp_path: Path) -> dict[str, Path]:
    storage = tmp_path / "storage"
    (storage / "music").mkdir(parents=True)
    (storage / "music" / "a.mp3").write_bytes(b"mp3 data")
    (storage / "music" / "b.flac").write_bytes(b"flac data")
    config = tmp_path / "config.toml"
    config.write_text(
        f'storage_root = "{storage}"\n'
        f'work_dir = "{tmp_path / "work"}"\n'
        f'sessions_file = "{tmp_path / "sessions.json"}"\n'
        "queue_capacity = 3\n"
        'log_level = "WARNING"\n',
        encoding="utf-8",
    )
    return {"storage": storage, "config": config, "root": tmp_path}


def invoke(setup: dict[str, Path], *args: str):
    return runner.invoke(app, ["--config", str(setup["config"]), *args])


def test_enqueue_and_status(setup: dict[str, Path]) -> None:
    storage = setup["storage"]
    result = invoke(setup, "enqueue", "42", str(storage / "music" / "a.mp3"), "https://cdn.example.com/b.mp3")
    assert result.exit_code == 0, result.output
    assert "Added to queue (1/3): a.mp3" in result.output
    assert "Added to queue (2/3): b.mp3" in result.output

    result = invoke(setup, "status", "42")
    assert result.exit_code == 0
    assert "local_reference" in result.output
    assert "remote_url" in result.output


def test_status_of_unknown_owner(setup: dict[str, Path]) -> None:
    result = invoke(setup, "status", "7")
    assert result.exit_code == 0
    assert "Queue is empty" in result.output


def test_queue_full(setup: dict[str, Path]) -> None:
    refs = [f"https://cdn.example.com/{i}.mp3" for i in range(4)]
    result = invoke(setup, "enqueue", "42", *refs)
    assert result.exit_code == 1
    assert "Queue full" in result.output
    assert "3 of 4 added" in result.output


def test_clear(setup: dict[str, Path]) -> None:
    invoke(setup, "enqueue", "42", "https://cdn.example.com/a.mp3")
    result = invoke(setup, "clear", "42")
    assert result.exit_code == 0
    assert "Queue cleared" in result.output
    assert "Queue is empty" in invoke(setup, "status", "42").output


def test_merge_needs_two_items(setup: dict[str, Path]) -> None:
    invoke(setup, "enqueue", "42", "https://cdn.example.com/a.mp3")
    result = invoke(setup, "merge", "42", "-o", str(setup["root"] / "out.mp3"))
    assert result.exit_code == 1
    assert "Need at least 2 items" in result.output


def test_merge_local_files(setup: dict[str, Path], fake_subprocess) -> None:
    def fake_tools(command: list[str]) -> FakeProcess:
        if command[0] == "ffprobe":
            if command[-1].endswith(".flac"):
                return FakeProcess(stdout=ffprobe_json(codec="flac", sample_rate=48000, bit_rate=None))
            return FakeProcess(stdout=ffprobe_json(codec="mp3", bit_rate=320000))
        Path(command[-1]).write_bytes(b"fLaC merged")
        return FakeProcess(stdout=b"progress=end\n")

    recorder = fake_subprocess(fake_tools)
    storage = setup["storage"]
    invoke(setup, "enqueue", "42", "music/a.mp3", "music/b.flac")

    result = invoke(setup, "merge", "42", "-o", str(setup["root"] / "out" / "mix"), "--quiet")

    assert result.exit_code == 0, result.output
    assert "Merge complete" in result.output
    assert "flac lossless, 48000 Hz" in result.output
    merged = setup["root"] / "out" / "mix.flac"
    assert merged.read_bytes() == b"fLaC merged"
    assert [c[0] for c in recorder.commands] == ["ffprobe", "ffprobe", "ffmpeg"]
    assert (storage / "music" / "a.mp3").exists()
    assert list((setup["root"] / "work").iterdir()) == []
    assert "Queue is empty" in invoke(setup, "status", "42").output


def test_merge_failure_keeps_queue(setup: dict[str, Path], fake_subprocess) -> None:
    def failing_ffmpeg(command: list[str]) -> FakeProcess:
        if command[0] == "ffprobe":
            return FakeProcess(stdout=ffprobe_json())
        return FakeProcess(stderr=b"Conversion failed!\n", returncode=1)

    fake_subprocess(failing_ffmpeg)
    invoke(setup, "enqueue", "42", "music/a.mp3", "music/b.flac")

    result = invoke(setup, "merge", "42", "-o", str(setup["root"] / "mix.mp3"), "--quiet")

    assert result.exit_code == 1
    assert "local_reference" in invoke(setup, "status", "42").output


def test_sweep(setup: dict[str, Path]) -> None:
    stale = setup["storage"] / "music" / "a.mp3"
    past = time.time() - 48 * 3600
    os.utime(stale, (past, past))

    result = invoke(setup, "sweep", "--max-age-hours", "24")

    assert result.exit_code == 0
    assert "1 deleted" in " ".join(result.output.split())
    assert not stale.exists()
    assert (setup["storage"] / "music" / "b.flac").exists()


def test_sweep_rejects_missing_root(setup: dict[str, Path]) -> None:
    result = invoke(setup, "sweep", "--root", str(setup["root"] / "absent"))
    assert result.exit_code == 2


def test_evict(setup: dict[str, Path]) -> None:
    invoke(setup, "enqueue", "42", "https://cdn.example.com/a.mp3")
    result = invoke(setup, "evict")
    assert result.exit_code == 0
    assert "Evicted 0 idle session(s)" in result.output


def test_invalid_config_exits_with_2(tmp_path: Path) -> None:
    config = tmp_path / "bad.toml"
    config.write_text("merge_threads = 64\n", encoding="utf-8")
    result = runner.invoke(app, ["--config", str(config), "status", "1"])
    assert result.exit_code == 2
