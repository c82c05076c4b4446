"""Concatenate inputs into one output file with ffmpeg.

Every input is resampled to the negotiated rate and layout inside one
``-filter_complex`` graph and joined by the ``concat`` filter, so files with
different codecs, rates and channel counts merge in queue order. Progress is
read from ``-progress pipe:1``; diagnostics come from stderr.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from audiomerger.domain.constants import FLAC_MAX_COMPRESSION, MP3_MAX_CHANNELS, MP3_MAX_SAMPLE_RATE
from audiomerger.audio.probe import kill_process
from audiomerger.domain.exceptions import DependencyError, JobTimeoutError, TranscodeError
from audiomerger.domain.model import QualityProfile, SourceHandle
from audiomerger.sources.base import make_private_dir, private_handle, remove_private_dir
from audiomerger.sources.deadline import Deadline

__all__ = [
    "FFmpegProgressParser",
    "MergeEngine",
    "MergeTick",
    "build_filter_graph",
    "build_merge_command",
    "output_channel_count",
    "output_sample_rate",
]

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 40


@dataclass(frozen=True)
class MergeTick:
    """One progress observation from the running transcoder.

    Attributes:
        out_time_s: Seconds of output written so far
        elapsed_s: Wall-clock seconds since ffmpeg started
        fraction: 0.0 to 1.0 when the total input duration is known
        finished: True on ffmpeg's final ``progress=end`` block
    """

    out_time_s: float
    elapsed_s: float
    fraction: float | None = None
    finished: bool = False


MergeProgressCallback = Callable[[MergeTick], None]


def output_sample_rate(profile: QualityProfile) -> int:
    if profile.container_format == "mp3":
        return min(profile.sample_rate, MP3_MAX_SAMPLE_RATE)
    return profile.sample_rate


def output_channel_count(profile: QualityProfile) -> int:
    """Channel count the encoder accepts; mp3 downmixes anything wider to stereo."""
    if profile.container_format == "mp3":
        return min(profile.channel_count, MP3_MAX_CHANNELS)
    return profile.channel_count


def build_filter_graph(input_count: int, sample_rate: int, channels: int) -> str:
    """Resample every input to a common format, then concatenate in order.

    Example:
        >>> build_filter_graph(2, 44100, 2)
        '[0:a:0]aresample=44100,aformat=sample_rates=44100:channel_layouts=2c[a0];[1:a:0]aresample=44100,aformat=sample_rates=44100:channel_layouts=2c[a1];[a0][a1]concat=n=2:v=0:a=1[out]'
    """
    chains = [
        f"[{index}:a:0]aresample={sample_rate},"
        f"aformat=sample_rates={sample_rate}:channel_layouts={channels}c[a{index}]"
        for index in range(input_count)
    ]
    labels = "".join(f"[a{index}]" for index in range(input_count))
    return ";".join([*chains, f"{labels}concat=n={input_count}:v=0:a=1[out]"])


def build_merge_command(
    inputs: Sequence[Path],
    profile: QualityProfile,
    output: Path,
    *,
    ffmpeg_path: str = "ffmpeg",
    threads: int = 1,
) -> list[str]:
    sample_rate = output_sample_rate(profile)
    channels = output_channel_count(profile)
    command = [ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-v", "error"]
    for path in inputs:
        command += ["-i", str(path)]

    command += [
        "-filter_complex", build_filter_graph(len(inputs), sample_rate, channels),
        "-map", "[out]",
        "-c:a", profile.codec,
        "-ar", str(sample_rate),
        "-ac", str(channels),
    ]

    if profile.lossless:
        command += [
            "-compression_level", str(FLAC_MAX_COMPRESSION),
            "-exact_rice_parameters", "1",
        ]
    else:
        command += ["-b:a", f"{profile.bitrate_kbps}k"]
        if profile.container_format == "mp3":
            # VBR quality 0 overrides the CBR target in libmp3lame
            command += ["-q:a", "0"]

    command += [
        "-threads", str(threads),
        "-avoid_negative_ts", "make_zero",
        "-max_muxing_queue_size", "1024",
        "-progress", "pipe:1",
        "-nostats",
        "-f", profile.container_format,
        str(output),
    ]
    return command


class FFmpegProgressParser:
    """Fold ``key=value`` lines from ``-progress`` into ``MergeTick`` events."""

    def __init__(self, total_duration_s: float | None = None) -> None:
        self.total_duration_s = total_duration_s if total_duration_s and total_duration_s > 0 else None
        self.out_time_s = 0.0
        self._started = time.monotonic()

    def feed(self, line: str) -> MergeTick | None:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None

        if key in ("out_time_us", "out_time_ms"):
            # Both keys carry microseconds
            try:
                self.out_time_s = max(0.0, int(value) / 1_000_000)
            except ValueError:
                pass
            return None

        if key != "progress":
            return None

        finished = value == "end"
        fraction = None
        if finished:
            fraction = 1.0
        elif self.total_duration_s is not None:
            fraction = min(1.0, self.out_time_s / self.total_duration_s)
        return MergeTick(
            out_time_s=self.out_time_s,
            elapsed_s=time.monotonic() - self._started,
            fraction=fraction,
            finished=finished,
        )


class MergeEngine:
    """Drive ffmpeg to produce one merged file per job.

    Args:
        ffmpeg_path: ffmpeg binary
        threads: Thread count handed to ffmpeg
        work_dir: Parent of the private output directory
    """

    def __init__(self, *, ffmpeg_path: str = "ffmpeg", threads: int = 1, work_dir: Path | None = None) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.threads = threads
        self.work_dir = work_dir

    async def merge(
        self,
        inputs: Sequence[Path],
        profile: QualityProfile,
        *,
        deadline: Deadline | None = None,
        on_progress: MergeProgressCallback | None = None,
        total_duration_s: float | None = None,
    ) -> SourceHandle:
        """Merge ``inputs`` in order and return a handle for the output.

        Raises:
            TranscodeError: ffmpeg exited non-zero or wrote nothing
            JobTimeoutError: ``deadline`` passed while ffmpeg was running
            DependencyError: ffmpeg is not installed
        """
        if not inputs:
            raise ValueError("merge requires at least one input")

        directory = make_private_dir(self.work_dir, "audiomerger_out_")
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output = directory / f"merged_{stamp}.{profile.container_format}"
        command = build_merge_command(
            inputs, profile, output, ffmpeg_path=self.ffmpeg_path, threads=self.threads
        )
        logger.debug("Running ffmpeg: %s", " ".join(command))

        try:
            returncode, stderr = await self._run(
                command,
                deadline=deadline or Deadline.never(),
                parser=FFmpegProgressParser(total_duration_s),
                on_progress=on_progress,
            )
            if returncode != 0:
                raise TranscodeError.from_ffmpeg_error(returncode, stderr, input_count=len(inputs))
            if not output.is_file() or output.stat().st_size == 0:
                raise TranscodeError(
                    "ffmpeg produced no output",
                    context={"output": str(output), "stderr_tail": stderr[-500:]},
                )
        except BaseException:
            remove_private_dir(directory)
            raise

        logger.info("Merged %d inputs into %s (%s)", len(inputs), output.name, profile.describe())
        return private_handle(output, directory, label=output.name)

    async def _run(
        self,
        command: list[str],
        *,
        deadline: Deadline,
        parser: FFmpegProgressParser,
        on_progress: MergeProgressCallback | None,
    ) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise DependencyError.missing_ffmpeg(self.ffmpeg_path) from exc

        tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)

        async def collect_stderr() -> None:
            assert process.stderr is not None
            async for raw in process.stderr:
                tail.append(raw.decode("utf-8", errors="replace").rstrip())

        async def drive() -> int:
            assert process.stdout is not None
            stderr_task = asyncio.create_task(collect_stderr())
            try:
                async for raw in process.stdout:
                    tick = parser.feed(raw.decode("utf-8", errors="replace"))
                    if tick is not None and on_progress is not None:
                        _notify(on_progress, tick)
                await stderr_task
            finally:
                stderr_task.cancel()
            return await process.wait()

        try:
            returncode = await asyncio.wait_for(drive(), timeout=deadline.timeout())
        except asyncio.TimeoutError as exc:
            await kill_process(process)
            raise JobTimeoutError.exceeded("merge", deadline.budget_s) from exc
        except BaseException:
            await kill_process(process)
            raise

        return returncode, "\n".join(tail)


def _notify(callback: MergeProgressCallback, tick: MergeTick) -> None:
    try:
        callback(tick)
    except Exception:
        logger.warning("Progress callback failed", exc_info=True)

