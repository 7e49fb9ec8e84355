"""
Builds the engine argument list for a job: the encode plan.

`EncodePlanBuilder.build` is a pure function of the job's settings, its probed
facts, the chosen output path, an optional thumbnail image and the hardware
acceleration flag. Calling it twice with the same inputs yields the same
argument tuple, which keeps plans easy to test and to log.

The only side effect a plan may need, extracting a preview frame for a
passthrough video, is done beforehand by `ThumbnailExtractor`; the builder just
receives the resulting image path and declares it as a temporary artifact that
the process supervisor removes when the run ends.
"""
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import ffmpeg
from loguru import logger

from ..config.audio import LOSSY_AUDIO_CODEC
from ..config.video import (
    FASTSTART_FLAGS,
    HVC1_TAG,
    HVC1_TAGGED_CODECS,
    MIN_ADAPTIVE_VIDEO_BITRATE_KBPS,
    MP4_SUBTITLE_CODEC,
    THUMBNAIL_CODEC,
    THUMBNAIL_POSITION_RATIO,
    THUMBNAIL_QUALITY,
    UNDETERMINED_LANGUAGE,
)
from ..domain.job import EncodeSettings, JobSnapshot
from ..domain.media import MediaKind
from ..utils.engine_utils import resolve_engine


@dataclass(frozen=True)
class EncodePlan:
    """
    Everything a process supervisor needs to run one conversion.

    Attributes:
        job_id: The job the plan belongs to.
        source_path: The input file.
        output_path: The declared output file, verified after a successful exit.
        arguments: Engine arguments, without the executable itself.
        duration_seconds: Probed duration used to turn `time=` into progress (0 if unknown).
        temporary_files: Artifacts created for this plan, removed on every exit path.
    """

    job_id: str
    source_path: Path
    output_path: Path
    arguments: Tuple[str, ...]
    duration_seconds: float = 0.0
    temporary_files: Tuple[Path, ...] = field(default_factory=tuple)


def compute_adaptive_bitrate(
    max_output_size_mb: int, duration_seconds: float, audio_bitrate_kbps: int
) -> int:
    """
    Computes the video bitrate that makes the output fit a target file size.

    The total bit budget minus the audio track's budget is spread over the
    duration, with a floor that keeps the stream decodable:

        max(500, floor((size_mb*1024*1024*8 - audio_kbps*1000*duration) / duration / 1000))

    Args:
        max_output_size_mb: Target output size in megabytes (MiB).
        duration_seconds: Media duration; must be > 0.
        audio_bitrate_kbps: Bitrate reserved for the audio track.

    Returns:
        The video bitrate in kbps.
    """
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive to compute an adaptive bitrate")
    total_bits = max_output_size_mb * 1024 * 1024 * 8
    audio_bits = audio_bitrate_kbps * 1000 * duration_seconds
    video_kbps = math.floor((total_bits - audio_bits) / duration_seconds / 1000)
    return max(MIN_ADAPTIVE_VIDEO_BITRATE_KBPS, video_kbps)


def select_video_bitrate(settings: EncodeSettings, duration_seconds: float) -> int:
    """
    Chooses the video bitrate of a re-encoded job.

    Priority: the user's custom bitrate, then the adaptive target when a maximum
    output size is set and the duration is known, then the quality preset.
    """
    if settings.custom_bitrate_kbps is not None:
        return settings.custom_bitrate_kbps
    if settings.max_output_size_mb is not None and duration_seconds > 0:
        return compute_adaptive_bitrate(
            settings.max_output_size_mb, duration_seconds, settings.audio_bitrate_kbps
        )
    return settings.quality.bitrate_kbps


class EncodePlanBuilder:
    """
    Turns a job snapshot into an `EncodePlan`.

    Attributes:
        hardware_acceleration (bool): Whether re-encoding uses the platform's
            hardware encoders instead of the software ones.
    """

    def __init__(self, hardware_acceleration: bool = False):
        self.hardware_acceleration = hardware_acceleration

    def build(
        self,
        job: JobSnapshot,
        output_path: Path,
        thumbnail_path: Optional[Path] = None,
    ) -> EncodePlan:
        """
        Builds the plan of `job`.

        Args:
            job: Snapshot of the job (settings, probe facts, source path).
            output_path: Where the engine writes the converted file.
            thumbnail_path: Preview image to embed in a passthrough video, if one
                            was extracted. Ignored for other kinds of jobs.

        Returns:
            The encode plan. `-y` and the output path are always the last two arguments.
        """
        settings = job.settings
        source = str(job.source_path)
        temporary_files: Tuple[Path, ...] = ()

        if job.media_kind is MediaKind.AUDIO:
            args = self._audio_arguments(job, source)
        elif settings.video_codec.is_passthrough:
            if thumbnail_path is not None:
                temporary_files = (thumbnail_path,)
            args = self._passthrough_arguments(job, source, thumbnail_path)
            args.extend(self._subtitle_arguments(job))
        else:
            args = self._reencode_arguments(job, source)
            args.extend(self._subtitle_arguments(job))

        args.extend(["-y", str(output_path)])
        return EncodePlan(
            job_id=job.id,
            source_path=job.source_path,
            output_path=output_path,
            arguments=tuple(args),
            duration_seconds=job.duration_seconds,
            temporary_files=temporary_files,
        )

    # --- Argument sections ---

    @staticmethod
    def _audio_arguments(job: JobSnapshot, source: str) -> List[str]:
        settings = job.settings
        has_cover = job.probe is not None and job.probe.has_cover_image
        codec = settings.output_format.audio_codec

        args = ["-i", source, "-map_metadata", "0", "-map", "0:a"]
        if has_cover:
            args.extend(["-map", "0:v", "-c:a", codec, "-c:v", "copy", "-disposition:v", "attached_pic"])
        else:
            args.extend(["-vn", "-c:a", codec])
        if codec == LOSSY_AUDIO_CODEC:
            args.extend(["-b:a", f"{settings.audio_bitrate_kbps}k"])
        return args

    @staticmethod
    def _passthrough_arguments(
        job: JobSnapshot, source: str, thumbnail_path: Optional[Path]
    ) -> List[str]:
        if thumbnail_path is not None:
            args = [
                "-i", source,
                "-i", str(thumbnail_path),
                "-map", "0:v:0",
                "-map", "1:v:0",
                "-c:v:0", "copy",
                "-c:v:1", THUMBNAIL_CODEC,
                "-disposition:v:0", "default",
                "-disposition:v:1", "attached_pic",
                "-tag:v:0", HVC1_TAG,
                "-movflags", FASTSTART_FLAGS,
            ]
        else:
            args = [
                "-i", source,
                "-map", "0:v:0",
                "-c:v", "copy",
                "-tag:v", HVC1_TAG,
                "-movflags", FASTSTART_FLAGS,
            ]
        args.extend(EncodePlanBuilder._audio_map_arguments(job))
        args.extend(["-c:a", "copy"])
        return args

    def _reencode_arguments(self, job: JobSnapshot, source: str) -> List[str]:
        settings = job.settings
        video_bitrate = select_video_bitrate(settings, job.duration_seconds)
        args = [
            "-i", source,
            "-map", "0:v:0",
            "-c:v", settings.video_codec.encoder(self.hardware_acceleration),
            "-b:v", f"{video_bitrate}k",
            "-vf", f"scale=-2:{settings.resolution.height}",
            "-c:a", LOSSY_AUDIO_CODEC,
            "-b:a", f"{settings.audio_bitrate_kbps}k",
            "-movflags", FASTSTART_FLAGS,
        ]
        if settings.video_codec.value in HVC1_TAGGED_CODECS:
            args.extend(["-tag:v", HVC1_TAG])
        args.extend(self._audio_map_arguments(job))
        return args

    @staticmethod
    def _audio_map_arguments(job: JobSnapshot) -> List[str]:
        # "0:a:0?" maps the first audio stream and tolerates sources without audio.
        selected = job.settings.selected_audio_track
        if selected is not None:
            return ["-map", f"0:{selected}"]
        return ["-map", "0:a:0?"]

    @staticmethod
    def _subtitle_arguments(job: JobSnapshot) -> List[str]:
        selected = job.settings.selected_subtitle_track
        if selected is None:
            return []
        args = ["-map", f"0:{selected}", "-c:s", MP4_SUBTITLE_CODEC]
        track = next((t for t in job.available_subtitle_tracks if t.index == selected), None)
        if track is not None:
            if track.language and track.language != UNDETERMINED_LANGUAGE:
                args.extend(["-metadata:s:s:0", f"language={track.language}"])
            if track.title:
                args.extend(["-metadata:s:s:0", f"title={track.title}"])
        return args


class ThumbnailExtractor:
    """
    Grabs one frame of a video as a JPEG, for embedding as a preview picture.

    Extraction is best effort: a failure is logged at WARNING level and the
    conversion proceeds without a preview.
    """

    def __init__(self, engine: str):
        self.engine = engine

    @staticmethod
    def thumbnail_path_for(job_id: str, output_dir: Path) -> Path:
        return output_dir / f".thumb_{job_id}.jpg"

    def extract(
        self, source_path: Path, duration_seconds: float, destination: Path
    ) -> Optional[Path]:
        """
        Writes the frame at 10% of the duration to `destination`.

        Returns:
            `destination` if the image was written, otherwise None.
        """
        if duration_seconds <= 0:
            logger.warning(
                f"[ThumbnailExtractor] Duration of {source_path.name} unknown; converting without a preview image."
            )
            return None

        position = duration_seconds * THUMBNAIL_POSITION_RATIO
        resolved = resolve_engine(self.engine)
        stream = (
            ffmpeg.input(str(source_path), ss=f"{position:.2f}")
            .output(str(destination), vframes=1, **{"q:v": THUMBNAIL_QUALITY})
            .overwrite_output()
        )
        logger.debug(f"[ThumbnailExtractor] {' '.join(stream.get_args())}")

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            stream.run(
                cmd=str(resolved) if resolved else self.engine,
                capture_stdout=True,
                capture_stderr=True,
            )
        except ffmpeg.Error as e:
            stderr_text = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            logger.warning(
                f"[ThumbnailExtractor] Could not extract a preview of {source_path.name}; "
                f"converting without it. {stderr_text[-500:]}"
            )
            destination.unlink(missing_ok=True)
            return None
        except OSError as e:
            logger.warning(
                f"[ThumbnailExtractor] Could not run the engine for a preview of {source_path.name}: {e}"
            )
            return None

        if not destination.is_file():
            logger.warning(
                f"[ThumbnailExtractor] Engine produced no preview image for {source_path.name}."
            )
            return None
        return destination
