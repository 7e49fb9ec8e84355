"""
Defines the Job model: one requested conversion and its state machine.

A `Job` is the only object mutated by more than one thread (the scheduler and
the worker running its process supervisor). Every mutation takes the job's own
lock and updates all affected fields at once, and readers get an immutable
`JobSnapshot`, so no caller ever observes a half-applied change.

Lifecycle:
    pending -> converting -> completed | failed | cancelled
    pending -> cancelled     (cancelled or removed before dispatch)

Terminal states have no outgoing edges; a retry is a new submission.
"""
import dataclasses
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

from ..config.audio import DEFAULT_AUDIO_BITRATE_KBPS
from .exceptions import InvalidSettings, InvalidTransition, JobNotEditable
from .media import (
    MediaKind,
    OutputFormat,
    ProbeResult,
    Track,
    VideoCodec,
    VideoQuality,
    VideoResolution,
)


class JobStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


CANCELLED_MESSAGE = "Conversion cancelled"

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.CONVERTING, JobStatus.CANCELLED}),
    JobStatus.CONVERTING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class EncodeSettings:
    """
    The user-editable encode settings of a job.

    Instances are immutable; an edit replaces the whole value so a plan is
    always built from a consistent set of settings.
    """

    output_format: OutputFormat
    video_codec: VideoCodec = VideoCodec.H264
    resolution: VideoResolution = VideoResolution.R1080P
    quality: VideoQuality = VideoQuality.HIGH
    custom_bitrate_kbps: Optional[int] = None
    max_output_size_mb: Optional[int] = None
    audio_bitrate_kbps: int = DEFAULT_AUDIO_BITRATE_KBPS
    selected_audio_track: Optional[int] = None
    selected_subtitle_track: Optional[int] = None

    def validate(
        self,
        media_kind: MediaKind,
        audio_tracks: Tuple[Track, ...] = (),
        subtitle_tracks: Tuple[Track, ...] = (),
    ) -> None:
        """
        Checks the settings against the job they belong to.

        Args:
            media_kind: The kind of the job's source file.
            audio_tracks: The audio tracks available for selection.
            subtitle_tracks: The subtitle tracks available for selection.

        Raises:
            InvalidSettings: Describing the first problem found.
        """
        if self.output_format.media_kind is not media_kind:
            raise InvalidSettings(
                f"Output format '{self.output_format.value}' is not valid for a {media_kind.value} job"
            )
        for name in ("custom_bitrate_kbps", "max_output_size_mb"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise InvalidSettings(f"{name} must be positive, got {value}")
        if self.audio_bitrate_kbps <= 0:
            raise InvalidSettings(
                f"audio_bitrate_kbps must be positive, got {self.audio_bitrate_kbps}"
            )
        if self.selected_audio_track is not None and all(
            t.index != self.selected_audio_track for t in audio_tracks
        ):
            raise InvalidSettings(
                f"Audio track {self.selected_audio_track} is not available"
            )
        if self.selected_subtitle_track is not None and all(
            t.index != self.selected_subtitle_track for t in subtitle_tracks
        ):
            raise InvalidSettings(
                f"Subtitle track {self.selected_subtitle_track} is not available"
            )


@dataclass(frozen=True)
class JobSnapshot:
    """A consistent, read-only view of a job taken under its lock."""

    id: str
    source_path: Path
    media_kind: MediaKind
    settings: EncodeSettings
    probe: Optional[ProbeResult]
    available_audio_tracks: Tuple[Track, ...]
    available_subtitle_tracks: Tuple[Track, ...]
    status: JobStatus
    progress: float
    error_message: Optional[str]
    output_path: Optional[Path]

    @property
    def name(self) -> str:
        return self.source_path.name

    @property
    def duration_seconds(self) -> float:
        return self.probe.duration_seconds if self.probe else 0.0

    @property
    def status_message(self) -> Optional[str]:
        """Human-readable reason of a non-success terminal state, None otherwise."""
        if self.status is JobStatus.FAILED:
            return self.error_message
        if self.status is JobStatus.CANCELLED:
            return CANCELLED_MESSAGE
        return None


class Job:
    """
    One requested conversion with its own settings and lifecycle.

    Attributes that never change after creation (id, source path, media kind,
    probe facts, available tracks) are plain attributes. Everything else is
    read and written under `_lock` through the methods below.
    """

    def __init__(
        self,
        source_path: Path,
        media_kind: MediaKind,
        settings: EncodeSettings,
        probe: Optional[ProbeResult] = None,
        job_id: Optional[str] = None,
    ):
        self.id: str = job_id or uuid.uuid4().hex
        self.source_path: Path = Path(source_path).absolute()
        self.media_kind: MediaKind = media_kind
        self.probe: Optional[ProbeResult] = probe
        if media_kind is MediaKind.VIDEO and probe is not None:
            self.available_audio_tracks: Tuple[Track, ...] = probe.audio_tracks
            self.available_subtitle_tracks: Tuple[Track, ...] = probe.subtitle_tracks
        else:
            self.available_audio_tracks = ()
            self.available_subtitle_tracks = ()

        settings.validate(
            media_kind, self.available_audio_tracks, self.available_subtitle_tracks
        )

        self._lock = threading.Lock()
        self._settings = settings
        self._status = JobStatus.PENDING
        self._progress = 0.0
        self._error_message: Optional[str] = None
        self._output_path: Optional[Path] = None

    def __repr__(self) -> str:
        return f"Job(id={self.id!r}, source={self.source_path.name!r}, status={self.status.value})"

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return self._status

    @property
    def settings(self) -> EncodeSettings:
        with self._lock:
            return self._settings

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    def update_settings(self, **changes: Any) -> EncodeSettings:
        """
        Replaces some encode settings while the job is still pending.

        Args:
            **changes: Field names of `EncodeSettings` with their new values.

        Returns:
            The new settings value.

        Raises:
            JobNotEditable: If the job has left 'pending'.
            InvalidSettings: If the resulting settings are invalid; the job is unchanged.
        """
        with self._lock:
            if self._status is not JobStatus.PENDING:
                raise JobNotEditable(
                    f"Job {self.id} is {self._status.value}; settings can only change while pending"
                )
            try:
                updated = dataclasses.replace(self._settings, **changes)
            except TypeError as e:
                raise InvalidSettings(str(e)) from e
            updated.validate(
                self.media_kind,
                self.available_audio_tracks,
                self.available_subtitle_tracks,
            )
            self._settings = updated
            return updated

    def transition(
        self,
        status: JobStatus,
        error_message: Optional[str] = None,
        output_path: Optional[Path] = None,
    ) -> None:
        """
        Moves the job to `status` along a legal edge of the state machine.

        Entering 'converting' resets progress; 'completed' records the output
        path and full progress; 'failed' records the error message.

        Raises:
            InvalidTransition: If the edge does not exist.
        """
        with self._lock:
            if status not in _ALLOWED_TRANSITIONS[self._status]:
                raise InvalidTransition(self.id, self._status.value, status.value)
            self._status = status
            if status is JobStatus.CONVERTING:
                self._progress = 0.0
            elif status is JobStatus.COMPLETED:
                self._progress = 1.0
                self._output_path = output_path
            elif status is JobStatus.FAILED:
                self._error_message = error_message or "Conversion failed"

    def report_progress(self, value: float) -> bool:
        """
        Records a progress value for a converting job.

        Values are clamped to [0, 1]; a value that does not increase the current
        progress, or that arrives while the job is not converting, is ignored.

        Returns:
            True if the stored progress changed.
        """
        value = min(max(value, 0.0), 1.0)
        with self._lock:
            if self._status is not JobStatus.CONVERTING or value <= self._progress:
                return False
            self._progress = value
            return True

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return JobSnapshot(
                id=self.id,
                source_path=self.source_path,
                media_kind=self.media_kind,
                settings=self._settings,
                probe=self.probe,
                available_audio_tracks=self.available_audio_tracks,
                available_subtitle_tracks=self.available_subtitle_tracks,
                status=self._status,
                progress=self._progress,
                error_message=self._error_message,
                output_path=self._output_path,
            )
