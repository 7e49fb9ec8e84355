"""
Provides the media prober, which learns the facts of a source file.

The prober runs the engine in inspect-only mode (`ffmpeg -i <file>` with no
output target) and reads the diagnostic stream it prints before giving up. The
relevant part of that stream looks like:

    Input #0, matroska,webm, from 'movie.mkv':
      Duration: 00:42:17.36, start: 0.000000, bitrate: 4521 kb/s
      Stream #0:0: Video: h264 (High), yuv420p, 1920x1080, 23.98 fps
      Stream #0:1(eng): Audio: ac3, 48000 Hz, 5.1(side), fltp, 640 kb/s
        Metadata:
          title           : Surround 5.1
      Stream #0:2(fre): Subtitle: subrip
        Metadata:
          title           : Forced

Without an output file the engine exits with code 1. That exit is accepted as
success for probing only, and only when a duration line is present.
"""
import re
import subprocess
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.common import PROBE_TIMEOUT_SECONDS
from ..config.video import UNDETERMINED_LANGUAGE
from ..domain.exceptions import ProbeFailed
from ..domain.media import ProbeResult, Track, parse_timecode
from ..utils.engine_utils import command_to_display, engine_command

# Exit codes of an inspect-only invocation that still carry usable facts.
PROBE_ACCEPTED_EXIT_CODES = (0, 1)

_DURATION_PATTERN = re.compile(r"Duration:\s*(\d+:\d{2}:\d{2}(?:\.\d+)?)")
_STREAM_PATTERN = re.compile(
    r"Stream #\d+:(?P<index>\d+)"
    r"(?:\[[^\]]*\])?"
    r"(?:\((?P<lang>[^)]*)\))?"
    r"(?:\[[^\]]*\])?"
    r":\s*(?P<kind>Audio|Subtitle|Video|Data|Attachment):\s*(?P<details>.*)"
)
_METADATA_PATTERN = re.compile(r"^\s+(?P<key>[^:]+?)\s*:\s?(?P<value>.*)$")
_ATTACHED_PICTURE_MARKER = "(attached pic)"


def parse_duration(diagnostics: str) -> Optional[float]:
    """Returns the seconds of the first well-formed `Duration:` line, or None."""
    for line in diagnostics.splitlines():
        match = _DURATION_PATTERN.search(line)
        if match:
            seconds = parse_timecode(match.group(1))
            if seconds is not None:
                return seconds
    return None


def parse_probe_output(diagnostics: str) -> ProbeResult:
    """
    Extracts duration, tracks and cover image presence from diagnostic text.

    A stream line opens a track record; indented `title: value` metadata lines
    that follow attach to the most recently opened audio or subtitle track.
    Any other stream line (video, data) closes the current record.

    Args:
        diagnostics: The full diagnostic output of an inspect-only invocation.

    Returns:
        The parsed `ProbeResult`, tracks sorted by stream index.

    Raises:
        ProbeFailed: If no duration line can be found.
    """
    duration = parse_duration(diagnostics)
    if duration is None:
        raise ProbeFailed("No duration line found in the engine's diagnostic output")

    audio_tracks: List[dict] = []
    subtitle_tracks: List[dict] = []
    current: Optional[dict] = None
    has_cover_image = False

    for line in diagnostics.splitlines():
        stream_match = _STREAM_PATTERN.search(line)
        if stream_match:
            kind = stream_match.group("kind")
            lang = (stream_match.group("lang") or "").strip() or UNDETERMINED_LANGUAGE
            record = {"index": int(stream_match.group("index")), "language": lang, "title": ""}
            if kind == "Audio":
                audio_tracks.append(record)
                current = record
            elif kind == "Subtitle":
                subtitle_tracks.append(record)
                current = record
            else:
                current = None
                if kind == "Video" and _ATTACHED_PICTURE_MARKER in stream_match.group("details"):
                    has_cover_image = True
            continue

        if current is None:
            continue
        metadata_match = _METADATA_PATTERN.match(line)
        if not metadata_match:
            # A non-indented line ends the metadata block of the current stream.
            current = None
            continue
        if metadata_match.group("key").strip().lower() == "title":
            current["title"] = metadata_match.group("value").strip()

    return ProbeResult(
        duration_seconds=duration,
        audio_tracks=tuple(Track(**t) for t in sorted(audio_tracks, key=lambda t: t["index"])),
        subtitle_tracks=tuple(Track(**t) for t in sorted(subtitle_tracks, key=lambda t: t["index"])),
        has_cover_image=has_cover_image,
    )


class MediaProber:
    """
    Runs inspect-only engine invocations and parses their diagnostic stream.

    Attributes:
        engine (str): The engine executable (path or command name).
        timeout (float): Seconds after which a probe invocation is abandoned.
    """

    def __init__(self, engine: str, timeout: float = PROBE_TIMEOUT_SECONDS):
        self.engine = engine
        self.timeout = timeout

    def probe(self, source_path: Path) -> ProbeResult:
        """
        Probes `source_path` for its duration, tracks and cover image.

        No file is written.

        Raises:
            ProbeFailed: If the engine cannot be launched, exits with an
                         unexpected code, times out, or prints no duration.
        """
        cmd_list = engine_command(
            self.engine, ["-hide_banner", "-nostdin", "-i", str(source_path)]
        )
        logger.debug(f"[MediaProber] Probing {source_path.name}: {command_to_display(cmd_list)}")

        try:
            result = subprocess.run(
                cmd_list,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                shell=False,
            )
        except FileNotFoundError as e:
            raise ProbeFailed(f"Transcoding engine not found: {self.engine}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeFailed(
                f"Probe of {source_path.name} timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise ProbeFailed(f"Could not launch the transcoding engine: {e}") from e

        if result.returncode not in PROBE_ACCEPTED_EXIT_CODES:
            raise ProbeFailed(
                f"Probe of {source_path.name} failed with exit code {result.returncode}:\n"
                f"{result.stderr.strip()[-1000:]}"
            )

        try:
            facts = parse_probe_output(result.stderr)
        except ProbeFailed as e:
            raise ProbeFailed(f"Probe of {source_path.name}: {e}") from e

        logger.debug(
            f"[MediaProber] {source_path.name}: duration={facts.duration_seconds:.2f}s, "
            f"{len(facts.audio_tracks)} audio, {len(facts.subtitle_tracks)} subtitle, "
            f"cover={facts.has_cover_image}"
        )
        return facts
