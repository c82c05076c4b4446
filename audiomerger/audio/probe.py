"""Stream metadata via ffprobe.

Probes run as asyncio subprocesses so a slow file never blocks the event loop.
A probe that fails for any reason raises ``ProbeError``; quality negotiation
catches it and substitutes defaults for that input.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from audiomerger.domain.exceptions import DependencyError, MergerError

__all__ = [
    "AudioStreamInfo",
    "ProbeError",
    "kill_process",
    "parse_probe_output",
    "probe_audio",
]

logger = logging.getLogger(__name__)


class ProbeError(MergerError):
    """ffprobe could not describe an input."""


@dataclass(frozen=True)
class AudioStreamInfo:
    """Properties of the first audio stream of one input.

    Attributes:
        codec: Decoder name as reported by ffprobe (``mp3``, ``flac``, ``pcm_s16le``)
        sample_rate: Hz
        channels: Channel count
        bitrate_kbps: Stream or container bit rate, if reported
        duration_s: Duration in seconds, if reported
    """

    codec: str
    sample_rate: int
    channels: int
    bitrate_kbps: int | None = None
    duration_s: float | None = None


def _to_int(value: Any) -> int | None:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _to_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def parse_probe_output(raw: str, path: Path) -> AudioStreamInfo:
    """Build ``AudioStreamInfo`` from ``ffprobe -print_format json`` output."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProbeError(
            f"Failed to parse audio metadata: {path.name}",
            cause=exc,
            context={"file": str(path)},
        ) from exc

    audio_stream = next(
        (stream for stream in data.get("streams", []) if stream.get("codec_type") == "audio"),
        None,
    )
    if audio_stream is None:
        raise ProbeError(f"No audio stream found in file: {path.name}", context={"file": str(path)})

    format_info = data.get("format", {})
    sample_rate = _to_int(audio_stream.get("sample_rate"))
    channels = _to_int(audio_stream.get("channels"))
    if sample_rate is None or channels is None:
        raise ProbeError(
            f"Invalid audio metadata: {path.name}",
            context={"file": str(path), "sample_rate": sample_rate, "channels": channels},
        )

    bitrate = _to_int(audio_stream.get("bit_rate")) or _to_int(format_info.get("bit_rate"))
    duration = _to_float(format_info.get("duration")) or _to_float(audio_stream.get("duration"))

    return AudioStreamInfo(
        codec=str(audio_stream.get("codec_name", "unknown")).lower(),
        sample_rate=sample_rate,
        channels=channels,
        bitrate_kbps=bitrate // 1000 if bitrate else None,
        duration_s=duration,
    )


async def probe_audio(
    path: Path,
    *,
    ffprobe_path: str = "ffprobe",
    timeout_s: float | None = 30.0,
) -> AudioStreamInfo:
    """Run ffprobe on ``path``.

    Raises:
        DependencyError: ffprobe is not installed
        ProbeError: Non-zero exit, timeout or unusable output
    """
    command = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise DependencyError.missing_ffmpeg(ffprobe_path) from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        await kill_process(process)
        raise ProbeError(
            f"Timeout reading audio file: {path.name}",
            cause=exc,
            context={"file": str(path), "timeout_seconds": timeout_s},
        ) from exc
    except BaseException:
        await kill_process(process)
        raise

    if process.returncode != 0:
        raise ProbeError(
            f"Failed to read audio file: {path.name}",
            context={
                "file": str(path),
                "ffprobe_exit_code": process.returncode,
                "stderr": stderr.decode("utf-8", errors="replace")[-500:],
            },
        )

    return parse_probe_output(stdout.decode("utf-8", errors="replace"), path)


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` if it is still running and reap it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
