"""
Media vocabulary of the Convertor: kinds, formats, codecs and probe facts.

The enumerations here are the values a job's encode settings are made of.
Their engine-facing details (encoder names, bitrates, heights) come from the
tables in `convertor.config`, so this module only decides *which* entry of a
table a value refers to.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from ..config.audio import (
    AUDIO_CODECS,
    AUDIO_EXTENSIONS,
    AUDIO_OUTPUT_EXTENSION,
)
from ..config.video import (
    PASSTHROUGH_CODEC,
    RESOLUTION_HEIGHTS,
    UNDETERMINED_LANGUAGE,
    VIDEO_ENCODERS,
    VIDEO_EXTENSIONS,
    VIDEO_OUTPUT_EXTENSION,
    VIDEO_QUALITY_BITRATES,
)
from .exceptions import UnsupportedMediaType

_TIMECODE_PATTERN = re.compile(r"(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)")


def parse_timecode(timecode: str) -> Optional[float]:
    """
    Parses an engine timecode 'HH:MM:SS.ss' into total seconds.

    Args:
        timecode: The timecode string, e.g. "01:00:00.50".

    Returns:
        The number of seconds as a float, or None when the string is not a
        well-formed timecode (for example "N/A").
    """
    match = _TIMECODE_PATTERN.fullmatch(timecode.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class OutputFormat(str, Enum):
    AAC = "aac"
    ALAC = "alac"
    MP4 = "mp4"

    @property
    def media_kind(self) -> MediaKind:
        return MediaKind.VIDEO if self is OutputFormat.MP4 else MediaKind.AUDIO

    @property
    def extension(self) -> str:
        if self is OutputFormat.MP4:
            return VIDEO_OUTPUT_EXTENSION
        return AUDIO_OUTPUT_EXTENSION

    @property
    def audio_codec(self) -> str:
        """Codec used for the audio stream of an audio-only output."""
        return AUDIO_CODECS.get(self.value, AUDIO_CODECS["aac"])


class VideoCodec(str, Enum):
    H264 = "h264"
    H265 = "h265"
    HEVC_COPY = "hevc_copy"

    @property
    def is_passthrough(self) -> bool:
        return self is VideoCodec.HEVC_COPY

    def encoder(self, hardware_acceleration: bool) -> str:
        """
        Returns the engine encoder for this logical codec.

        Both variants of a codec produce the same kind of stream; the hardware
        one is only faster.

        Args:
            hardware_acceleration: Whether the platform's hardware encoder may be used.
        """
        if self.is_passthrough:
            return PASSTHROUGH_CODEC
        hardware, software = VIDEO_ENCODERS[self.value]
        return hardware if hardware_acceleration else software


class VideoResolution(str, Enum):
    R720P = "720p"
    R1080P = "1080p"
    R2160P = "2160p"

    @property
    def height(self) -> int:
        return RESOLUTION_HEIGHTS[self.value]


class VideoQuality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def bitrate_kbps(self) -> int:
        return VIDEO_QUALITY_BITRATES[self.value]


class AudioQuality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
    LOSSLESS = "lossless"


@dataclass(frozen=True)
class Track:
    """An audio or subtitle stream of a source file, as reported by the prober."""

    index: int
    language: str = UNDETERMINED_LANGUAGE
    title: str = ""


@dataclass(frozen=True)
class ProbeResult:
    """
    Facts extracted from a source file by the media prober.

    Attributes:
        duration_seconds: Duration of the media. Always > 0 for a successful probe.
        audio_tracks: Audio streams, in stream index order.
        subtitle_tracks: Subtitle streams, in stream index order.
        has_cover_image: Whether an embedded picture stream (cover art) is present.
    """

    duration_seconds: float
    audio_tracks: Tuple[Track, ...] = field(default_factory=tuple)
    subtitle_tracks: Tuple[Track, ...] = field(default_factory=tuple)
    has_cover_image: bool = False


def classify_media_kind(path: Path) -> MediaKind:
    """
    Classifies a source file as audio or video from its extension.

    Args:
        path: The source file path. Only the suffix is inspected.

    Returns:
        The `MediaKind` of the file.

    Raises:
        UnsupportedMediaType: If the extension is neither a known audio nor video type.
    """
    suffix = path.suffix.lower()
    if suffix in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    if suffix in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    logger.debug(f"Unsupported extension '{suffix}' for {path.name}")
    raise UnsupportedMediaType(f"Unsupported file type: {path.name}")
