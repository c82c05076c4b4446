import asyncio
import os
import time
from pathlib import Path

from audiomerger.maintenance import run_periodic_sweep, sweep_stale_files

NOW = 1_800_000_000.0


def make_file(path: Path, age_hours: float, size: int = 10) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    mtime = NOW - age_hours * 3600
    os.utime(path, (mtime, mtime))
    return path


def test_sweep_deletes_only_stale_files(tmp_path: Path) -> None:
    old = make_file(tmp_path / "bot" / "music" / "old.mp3", age_hours=30, size=100)
    fresh = make_file(tmp_path / "bot" / "music" / "fresh.mp3", age_hours=1)
    nested_old = make_file(tmp_path / "bot" / "voice" / "deep" / "v.ogg", age_hours=48, size=50)

    result = sweep_stale_files(tmp_path, max_age_hours=24, now=NOW)

    assert result.scanned == 3
    assert result.deleted == 2
    assert result.failed == 0
    assert result.bytes_freed == 150
    assert not old.exists()
    assert not nested_old.exists()
    assert fresh.exists()
    # Directories are kept
    assert (tmp_path / "bot" / "voice" / "deep").is_dir()


def test_sweep_leaves_symlinks_and_targets(tmp_path: Path) -> None:
    outside = make_file(tmp_path / "outside" / "keep.mp3", age_hours=100)
    root = tmp_path / "storage"
    root.mkdir()
    link = root / "link.mp3"
    link.symlink_to(outside)

    result = sweep_stale_files(root, max_age_hours=24, now=NOW)

    assert result.deleted == 0
    assert link.is_symlink()
    assert outside.exists()


def test_sweep_missing_root(tmp_path: Path) -> None:
    result = sweep_stale_files(tmp_path / "absent", max_age_hours=24)
    assert result.scanned == 0
    assert result.deleted == 0


def test_sweep_uses_wall_clock_by_default(tmp_path: Path) -> None:
    path = tmp_path / "recent.mp3"
    path.write_bytes(b"x")
    assert sweep_stale_files(tmp_path, max_age_hours=1).deleted == 0
    assert path.exists()


def test_periodic_sweep_stops_on_event(tmp_path: Path) -> None:
    stale = tmp_path / "stale.mp3"
    stale.write_bytes(b"x")
    past = time.time() - 10 * 3600
    os.utime(stale, (past, past))

    async def scenario() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(run_periodic_sweep(tmp_path, 1, 3600, stop_event=stop))
        for _ in range(200):
            if not stale.exists():
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    asyncio.run(scenario())
    assert not stale.exists()
