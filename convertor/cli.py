"""
Command-Line Interface (CLI) of the Convertor.

This module uses Python's `argparse` to define the command-line arguments and
drives a `ConversionPipeline` headlessly: add the given files, run the batch,
report progress through the logger, and exit with a status code telling
whether every job completed.
"""
import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from .config.audio import AUDIO_BITRATE_CHOICES
from .config.common import LOGGER_FORMAT, MAX_CONCURRENCY, MIN_CONCURRENCY
from .config.settings import ConvertorSettings, OutputDirectoryType, load_settings
from .domain.exceptions import ConfigurationError, InvalidSettings
from .domain.job import JobSnapshot, JobStatus
from .domain.media import MediaKind, OutputFormat, VideoCodec, VideoQuality, VideoResolution
from .pipeline.conversion_pipeline import ConversionPipeline
from .utils.engine_utils import verify_engine
from .utils.format_utils import format_progress, format_timedelta

# Progress is logged each time a job crosses another multiple of this fraction.
PROGRESS_LOG_STEP = 0.1

# Seconds between two checks for Ctrl-C while waiting for the batch.
WAIT_POLL_SECONDS = 0.5


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for the Convertor.

    Returns:
        argparse.Namespace: The parsed arguments. Options left unset are None so
                            that the configuration file keeps its say.
    """
    parser = argparse.ArgumentParser(
        description="Convert audio files to AAC/ALAC (.m4a) and video files to MP4 using ffmpeg."
    )
    parser.add_argument(
        "paths", nargs="+", type=Path, help="Media files or directories to convert."
    )
    parser.add_argument(
        "--max-concurrency", type=int, default=None,
        help=f"Number of conversions running at once ({MIN_CONCURRENCY}-{MAX_CONCURRENCY})."
    )
    parser.add_argument(
        "--output-dir", type=Path, default=None,
        help="Directory receiving converted files (default: from config, else ~/Downloads)."
    )
    parser.add_argument(
        "--format", dest="audio_format", choices=["aac", "alac"], default=None,
        help="Output format of audio files."
    )
    parser.add_argument(
        "--video-codec", choices=[c.value for c in VideoCodec], default=None,
        help="Video codec; 'hevc_copy' re-muxes the video stream without re-encoding."
    )
    parser.add_argument(
        "--resolution", choices=[r.value for r in VideoResolution], default=None,
        help="Target resolution of re-encoded videos."
    )
    parser.add_argument(
        "--quality", choices=[q.value for q in VideoQuality], default=None,
        help="Quality preset (fixed bitrate) of re-encoded videos."
    )
    parser.add_argument(
        "--audio-bitrate", type=int, default=None,
        help=f"Audio bitrate in kbps (usual choices: {', '.join(map(str, AUDIO_BITRATE_CHOICES))})."
    )
    parser.add_argument(
        "--video-bitrate", type=int, default=None,
        help="Custom video bitrate in kbps; overrides --quality and --max-size-mb."
    )
    parser.add_argument(
        "--max-size-mb", type=int, default=None,
        help="Target maximum size of re-encoded videos; the bitrate is derived from the duration."
    )
    parser.add_argument(
        "--no-recursive", action="store_true", help="Do not descend into subdirectories."
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Path of the YAML configuration file."
    )
    parser.add_argument(
        "--engine", type=Path, default=None, help="Path of the ffmpeg executable."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )
    parser.add_argument(
        "--debug", action="store_true", help="Shortcut for --log-level DEBUG."
    )

    args = parser.parse_args(argv)

    if args.max_concurrency is not None and not MIN_CONCURRENCY <= args.max_concurrency <= MAX_CONCURRENCY:
        parser.error(
            f"--max-concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}"
        )
    for name in ("audio_bitrate", "video_bitrate", "max_size_mb"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            parser.error(f"--{name.replace('_', '-')} must be positive")
    return args


def configure_logger(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOGGER_FORMAT)


def build_settings(args: argparse.Namespace) -> ConvertorSettings:
    """Loads the configuration file and applies the command-line overrides."""
    settings = load_settings(args.config)
    overrides = {
        "max_concurrency": args.max_concurrency,
        "default_audio_format": OutputFormat(args.audio_format) if args.audio_format else None,
        "default_video_codec": VideoCodec(args.video_codec) if args.video_codec else None,
        "default_video_resolution": VideoResolution(args.resolution) if args.resolution else None,
        "video_quality": VideoQuality(args.quality) if args.quality else None,
        "default_audio_bitrate_kbps": args.audio_bitrate,
        "engine_path": args.engine,
    }
    if args.output_dir is not None:
        overrides["output_directory_type"] = OutputDirectoryType.CUSTOM
        overrides["custom_output_directory"] = args.output_dir
    return settings.with_overrides(**overrides)


def apply_video_overrides(pipeline: ConversionPipeline, args: argparse.Namespace) -> None:
    """Applies the per-job video options (bitrate, size target) to the pending video jobs."""
    changes = {}
    if args.video_bitrate is not None:
        changes["custom_bitrate_kbps"] = args.video_bitrate
    if args.max_size_mb is not None:
        changes["max_output_size_mb"] = args.max_size_mb
    if not changes:
        return
    for snapshot in pipeline.store.snapshots():
        if snapshot.media_kind is MediaKind.VIDEO and snapshot.status is JobStatus.PENDING:
            pipeline.update_settings(snapshot.id, **changes)


class ProgressReporter:
    """Store listener logging progress steps and status changes of every job."""

    def __init__(self, step: float = PROGRESS_LOG_STEP):
        self.step = step
        self._last_bucket: Dict[str, int] = {}
        self._last_status: Dict[str, JobStatus] = {}

    def __call__(self, snapshot: JobSnapshot) -> None:
        if self._last_status.get(snapshot.id) is not snapshot.status:
            self._last_status[snapshot.id] = snapshot.status
            self._last_bucket[snapshot.id] = 0
            return
        if snapshot.status is not JobStatus.CONVERTING:
            return
        bucket = int(snapshot.progress / self.step)
        if bucket > self._last_bucket.get(snapshot.id, 0):
            self._last_bucket[snapshot.id] = bucket
            logger.info(f"{snapshot.name}: {format_progress(snapshot.progress)}")


def main(argv: Optional[List[str]] = None) -> int:
    args = get_args(argv)
    configure_logger("DEBUG" if args.debug else args.log_level)
    logger.debug(f"Parsed arguments: {args}")

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if verify_engine(settings.engine_executable()) is None:
        return 2
    logger.info(f"Output directory: {settings.output_directory()}")

    with ConversionPipeline(settings) as pipeline:
        pipeline.store.subscribe(ProgressReporter())
        added = pipeline.add_paths(args.paths, recursive=not args.no_recursive)
        if not added:
            logger.warning("No supported media files to convert.")
            return 1
        try:
            apply_video_overrides(pipeline, args)
        except InvalidSettings as e:
            logger.error(f"Invalid video options: {e}")
            return 2

        started_at = datetime.now()
        pipeline.start()
        try:
            while not pipeline.wait(WAIT_POLL_SECONDS):
                pass
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling running conversions.")
            pipeline.cancel_all()
            pipeline.wait()

        pipeline.write_logs()
        summary = pipeline.summary()
        logger.info(", ".join(f"{status.value}: {count}" for status, count in summary.items()))
        all_completed = summary[JobStatus.COMPLETED] == len(pipeline.store)
        elapsed = format_timedelta(datetime.now() - started_at)

    if all_completed:
        logger.success(f"Convertor finished in {elapsed}.")
    else:
        logger.warning(f"Convertor finished in {elapsed} with jobs that did not complete.")
    return 0 if all_completed else 1
