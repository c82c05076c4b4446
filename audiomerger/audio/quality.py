"""Quality negotiation across heterogeneous inputs.

Aggregation is deterministic and order-independent:

- sample rate and channel count are the maximum over inputs, floored at
  44100 Hz and 2 channels;
- the output is lossless (FLAC) as soon as one input uses a lossless codec;
- otherwise it is MP3 at the highest input bit rate clamped to 192..320 kbps.

Inputs whose probe fails count as 128 kbps / 44100 Hz / stereo / lossy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from audiomerger.audio.probe import AudioStreamInfo, probe_audio
from audiomerger.domain.constants import (
    DEFAULT_BITRATE_KBPS,
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLE_RATE,
    MAX_LOSSY_BITRATE_KBPS,
    MIN_LOSSY_BITRATE_KBPS,
    encoder_for_container,
    is_lossless_codec,
)
from audiomerger.domain.exceptions import DependencyError, MergerError
from audiomerger.domain.model import QualityProfile

__all__ = [
    "DEFAULT_STREAM",
    "AnalysisResult",
    "QualityAnalyzer",
    "aggregate_profile",
    "clamp_lossy_bitrate",
]

logger = logging.getLogger(__name__)

DEFAULT_STREAM = AudioStreamInfo(
    codec="unknown",
    sample_rate=DEFAULT_SAMPLE_RATE,
    channels=DEFAULT_CHANNELS,
    bitrate_kbps=DEFAULT_BITRATE_KBPS,
)

Prober = Callable[[Path], Awaitable[AudioStreamInfo]]


def clamp_lossy_bitrate(kbps: int) -> int:
    """Clamp into the lossy output window.

    Example:
        >>> [clamp_lossy_bitrate(b) for b in (96, 256, 400)]
        [192, 256, 320]
    """
    return min(max(kbps, MIN_LOSSY_BITRATE_KBPS), MAX_LOSSY_BITRATE_KBPS)


def aggregate_profile(streams: Iterable[AudioStreamInfo]) -> QualityProfile:
    sample_rate = DEFAULT_SAMPLE_RATE
    channels = DEFAULT_CHANNELS
    bitrate = 0
    lossless = False

    for stream in streams:
        sample_rate = max(sample_rate, stream.sample_rate)
        channels = max(channels, stream.channels)
        bitrate = max(bitrate, stream.bitrate_kbps or DEFAULT_BITRATE_KBPS)
        lossless = lossless or is_lossless_codec(stream.codec)

    if lossless:
        return QualityProfile(
            sample_rate=sample_rate,
            channel_count=channels,
            lossless=True,
            bitrate_kbps=None,
            container_format="flac",
            codec=encoder_for_container("flac"),
        )
    return QualityProfile(
        sample_rate=sample_rate,
        channel_count=channels,
        lossless=False,
        bitrate_kbps=clamp_lossy_bitrate(bitrate or DEFAULT_BITRATE_KBPS),
        container_format="mp3",
        codec=encoder_for_container("mp3"),
    )


@dataclass(frozen=True)
class AnalysisResult:
    """Profile plus the per-input view it was derived from.

    ``streams`` holds None for inputs whose probe failed. ``total_duration_s``
    is None unless every input reported a duration.
    """

    profile: QualityProfile
    streams: tuple[AudioStreamInfo | None, ...]

    @property
    def total_duration_s(self) -> float | None:
        durations = [s.duration_s for s in self.streams if s is not None]
        if len(durations) != len(self.streams) or any(d is None for d in durations):
            return None
        return sum(d for d in durations if d is not None)

    @property
    def failed_probes(self) -> int:
        return sum(1 for s in self.streams if s is None)


class QualityAnalyzer:
    """Probe inputs and negotiate one output profile.

    A missing ffprobe binary is the one failure that is not recovered: every
    probe would fail and the negotiated profile would be meaningless.
    """

    def __init__(
        self,
        *,
        ffprobe_path: str = "ffprobe",
        probe_timeout_s: float | None = 30.0,
        prober: Prober | None = None,
    ) -> None:
        self.ffprobe_path = ffprobe_path
        self.probe_timeout_s = probe_timeout_s
        self._prober = prober or self._probe

    async def _probe(self, path: Path) -> AudioStreamInfo:
        return await probe_audio(path, ffprobe_path=self.ffprobe_path, timeout_s=self.probe_timeout_s)

    async def _probe_or_none(self, path: Path) -> AudioStreamInfo | None:
        try:
            return await self._prober(path)
        except DependencyError:
            raise
        except (MergerError, OSError) as exc:
            logger.warning("Probe failed for %s, assuming defaults: %s", path.name, exc)
            return None

    async def analyze_inputs(self, paths: Sequence[Path]) -> AnalysisResult:
        streams = tuple([await self._probe_or_none(path) for path in paths])
        profile = aggregate_profile(stream or DEFAULT_STREAM for stream in streams)
        logger.info("Quality analysis for %d inputs: %s", len(paths), profile.describe())
        return AnalysisResult(profile=profile, streams=streams)

    async def analyze(self, paths: Sequence[Path]) -> QualityProfile:
        return (await self.analyze_inputs(paths)).profile
