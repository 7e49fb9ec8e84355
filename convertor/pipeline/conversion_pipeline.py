"""
The conversion pipeline: from a list of paths to a finished batch.

`ConversionPipeline` wires the services together for one session:

    paths --add_file--> classification --> probe --> Job (pending) --> JobStore
                                                                          |
    start() --> Scheduler --> plan --> ProcessSupervisor --> terminal state
                                                                          |
    write_logs() <-- failed jobs to ErrorLog, finished jobs to ConversionReport

Adding a file never fails because of the file itself: unsupported files are
skipped, and a file that cannot be probed is still added with empty track
lists so the engine gets a chance to report the real problem.
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from ..config.audio import AUDIO_EXTENSIONS
from ..config.settings import ConvertorSettings
from ..config.video import VIDEO_EXTENSIONS
from ..domain.exceptions import ProbeFailed, UnsupportedMediaType
from ..domain.job import EncodeSettings, Job, JobSnapshot, JobStatus
from ..domain.media import MediaKind, OutputFormat, ProbeResult, classify_media_kind
from ..services.job_store import JobStore
from ..services.logging_service import ConversionReport, ErrorLog
from ..services.prober import MediaProber
from ..services.scheduler import Scheduler


class ConversionPipeline:
    """
    Submission surface and batch driver of the Convertor.

    Attributes:
        settings (ConvertorSettings): Defaults for new jobs and scheduler knobs.
        store (JobStore): All jobs of the session.
        prober (MediaProber): Probes every accepted file once, at submission.
        scheduler (Scheduler): Runs the jobs.
    """

    def __init__(
        self,
        settings: ConvertorSettings,
        store: Optional[JobStore] = None,
        prober: Optional[MediaProber] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.settings = settings
        self.store = store or JobStore()
        self.prober = prober or MediaProber(settings.engine_executable())
        self.scheduler = scheduler or Scheduler(self.store, settings)
        self._reported: Set[str] = set()

    def __enter__(self) -> "ConversionPipeline":
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()

    # --- Submission ---

    def default_settings(
        self, media_kind: MediaKind, probe: Optional[ProbeResult] = None
    ) -> EncodeSettings:
        """Encode settings of a newly added job, taken from the configuration."""
        if media_kind is MediaKind.AUDIO:
            return EncodeSettings(
                output_format=self.settings.audio_format_for_new_jobs,
                audio_bitrate_kbps=self.settings.default_audio_bitrate_kbps,
            )

        first_audio = probe.audio_tracks[0].index if probe and probe.audio_tracks else None
        return EncodeSettings(
            output_format=OutputFormat.MP4,
            video_codec=self.settings.default_video_codec,
            resolution=self.settings.default_video_resolution,
            quality=self.settings.video_quality,
            audio_bitrate_kbps=self.settings.default_audio_bitrate_kbps,
            selected_audio_track=first_audio,
        )

    def add_file(self, path: Path) -> Optional[JobSnapshot]:
        """
        Adds one source file as a pending job.

        Returns:
            The new job's snapshot, or None if the file is unsupported or
            already in the store.
        """
        path = Path(path).expanduser().absolute()
        try:
            media_kind = classify_media_kind(path)
        except UnsupportedMediaType:
            logger.debug(f"[ConversionPipeline] Unsupported file type: {path.name}. Skipping.")
            return None

        if self.store.find_by_source(path) is not None:
            logger.debug(f"[ConversionPipeline] {path.name} is already queued. Skipping.")
            return None

        probe: Optional[ProbeResult] = None
        try:
            probe = self.prober.probe(path)
        except ProbeFailed as e:
            logger.warning(f"[ConversionPipeline] Could not probe {path.name}; adding it without track info. {e}")

        job = Job(path, media_kind, self.default_settings(media_kind, probe), probe=probe)
        snapshot = self.scheduler.submit(job)
        logger.info(
            f"[ConversionPipeline] Added {media_kind.value} job {path.name} "
            f"({snapshot.settings.output_format.value})"
        )
        return snapshot

    def add_paths(self, paths: Iterable[Path], recursive: bool = True) -> List[JobSnapshot]:
        """
        Adds files and the supported files found in directories.

        Directory contents are added in sorted order, which is also their
        conversion order.
        """
        added: List[JobSnapshot] = []
        for raw_path in paths:
            path = Path(raw_path).expanduser()
            if path.is_dir():
                candidates = self._discover(path, recursive)
                logger.debug(f"[ConversionPipeline] Found {len(candidates)} media file(s) in {path}")
            elif path.is_file():
                candidates = [path]
            else:
                logger.warning(f"[ConversionPipeline] {path} does not exist. Skipping.")
                continue
            for candidate in candidates:
                snapshot = self.add_file(candidate)
                if snapshot is not None:
                    added.append(snapshot)
        return added

    @staticmethod
    def _discover(directory: Path, recursive: bool) -> List[Path]:
        extensions = set(AUDIO_EXTENSIONS) | set(VIDEO_EXTENSIONS)
        pattern = "**/*" if recursive else "*"
        return sorted(
            p for p in directory.glob(pattern)
            if p.is_file() and p.suffix.lower() in extensions and not p.name.startswith(".")
        )

    def update_settings(self, job_id: str, **changes) -> EncodeSettings:
        return self.store.update_settings(job_id, **changes)

    # --- Batch control ---

    def start(self) -> None:
        self.scheduler.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.scheduler.wait(timeout)

    def cancel(self, job_id: str) -> bool:
        return self.scheduler.cancel(job_id)

    def cancel_all(self) -> None:
        self.scheduler.cancel_all()

    def remove(self, job_id: str) -> bool:
        return self.scheduler.remove(job_id)

    def clear(self) -> None:
        self.scheduler.clear()
        self._reported.clear()

    def run(self, timeout: Optional[float] = None) -> bool:
        """
        Starts the batch, waits for it and writes the file logs.

        Returns:
            True if every job of the store completed.
        """
        self.start()
        finished = self.wait(timeout)
        if not finished:
            logger.warning(f"[ConversionPipeline] Batch still running after {timeout}s.")
        self.write_logs()
        summary = self.summary()
        logger.info(
            "[ConversionPipeline] Summary: "
            + ", ".join(f"{status.value}={count}" for status, count in summary.items())
        )
        return finished and summary[JobStatus.COMPLETED] == len(self.store)

    def close(self) -> None:
        self.scheduler.shutdown()

    # --- Reporting ---

    def summary(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        for snapshot in self.store.snapshots():
            counts[snapshot.status] += 1
        return counts

    def write_logs(self) -> None:
        """
        Records the jobs that reached a terminal state since the last call.

        Failed jobs go to the plain-text error log; every finished job goes to
        the YAML report. Both live in the output directory.
        """
        finished = [
            s for s in self.store.snapshots()
            if s.status.is_terminal and s.id not in self._reported
        ]
        if not finished:
            return

        output_dir = self.settings.output_directory()
        error_log = ErrorLog(output_dir)
        for snapshot in finished:
            if snapshot.status is JobStatus.FAILED:
                error_log.write_job(snapshot)
        ConversionReport(output_dir).write(finished)
        self._reported.update(s.id for s in finished)
