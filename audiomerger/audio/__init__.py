"""Audio probing, quality negotiation and merging via ffprobe/ffmpeg."""

from .merge import FFmpegProgressParser, MergeEngine, MergeTick, build_merge_command
from .probe import AudioStreamInfo, ProbeError, probe_audio
from .quality import AnalysisResult, QualityAnalyzer, aggregate_profile, clamp_lossy_bitrate

__all__ = [
    "AnalysisResult",
    "AudioStreamInfo",
    "FFmpegProgressParser",
    "MergeEngine",
    "MergeTick",
    "ProbeError",
    "QualityAnalyzer",
    "aggregate_profile",
    "build_merge_command",
    "clamp_lossy_bitrate",
    "probe_audio",
]
