"""Codec and container tables used by quality negotiation and merging."""

from __future__ import annotations

from typing import Final

# Container/format name -> ffmpeg encoder
CONTAINER_CODECS: Final[dict[str, str]] = {
    "mp3": "libmp3lame",
    "aac": "aac",
    "m4a": "aac",
    "wav": "pcm_s16le",
    "flac": "flac",
    "ogg": "libvorbis",
}

DEFAULT_ENCODER: Final = "libmp3lame"

# Decoded codec names (as reported by ffprobe) that carry no generational loss
LOSSLESS_CODECS: Final[frozenset[str]] = frozenset({"flac", "alac"})
PCM_CODEC_PREFIX: Final = "pcm_"

# Substituted for any input whose probe fails
DEFAULT_BITRATE_KBPS: Final = 128
DEFAULT_SAMPLE_RATE: Final = 44100
DEFAULT_CHANNELS: Final = 2

# Lossy output bit-rate window
MIN_LOSSY_BITRATE_KBPS: Final = 192
MAX_LOSSY_BITRATE_KBPS: Final = 320

# libmp3lame rejects anything above this
MP3_MAX_SAMPLE_RATE: Final = 48000

# libmp3lame encodes mono or stereo only
MP3_MAX_CHANNELS: Final = 2

# FLAC encoder compression ceiling in ffmpeg
FLAC_MAX_COMPRESSION: Final = 12

DEFAULT_QUEUE_CAPACITY: Final = 20
MIN_MERGE_ITEMS: Final = 2


def encoder_for_container(container: str) -> str:
    """Return the ffmpeg encoder for a container name (mp3 encoder if unknown)."""
    return CONTAINER_CODECS.get(container.lower(), DEFAULT_ENCODER)


def is_lossless_codec(codec: str | None) -> bool:
    """True for flac, alac and every PCM variant."""
    if not codec:
        return False
    name = codec.lower()
    return name in LOSSLESS_CODECS or name.startswith(PCM_CODEC_PREFIX)
