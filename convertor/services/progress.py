"""
Parses the engine's diagnostic stream into a progress fraction.

The engine prints status lines such as

    frame=  240 fps= 60 q=28.0 size=  1024kB time=00:00:10.00 bitrate= 838.9kbits/s

repeatedly on stderr, separated by carriage returns. Chunks read from the pipe
are cut arbitrarily by the OS, so a chunk may end in the middle of a line or
contain several status lines; only the most recent well-formed one matters.
"""
import re
from typing import Optional

from ..domain.media import parse_timecode

_TIME_TOKEN = re.compile(r"time=\s*(\d+:\d{2}:\d{2}(?:\.\d+)?)(?![\d.:])")
_LINE_SEPARATORS = re.compile(r"[\r\n]+")


def parse_progress(chunk: str, duration_seconds: float) -> Optional[float]:
    """
    Maps a chunk of diagnostic output to a progress value in [0, 1].

    Args:
        chunk: Text read from the engine's diagnostic stream.
        duration_seconds: Duration of the media being converted.

    Returns:
        `clamp(time / duration, 0, 1)` for the last line holding a well-formed
        `time=HH:MM:SS.ss` token, or None when there is no such line or the
        duration is unknown (<= 0).
    """
    if duration_seconds <= 0:
        return None

    for line in reversed(_LINE_SEPARATORS.split(chunk)):
        match = _TIME_TOKEN.search(line)
        if not match:
            continue
        seconds = parse_timecode(match.group(1))
        if seconds is None:
            continue
        return min(max(seconds / duration_seconds, 0.0), 1.0)
    return None
