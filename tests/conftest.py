import os
import stat
import sys
from pathlib import Path

import pytest
from loguru import logger

from convertor.config.settings import ConvertorSettings, OutputDirectoryType
from convertor.domain.job import EncodeSettings, Job
from convertor.domain.media import MediaKind, OutputFormat, ProbeResult, Track

# A stand-in for ffmpeg. It understands the three invocations the application
# makes (version check, inspect-only probe, conversion) and is steered by
# FAKE_* environment variables.
FAKE_ENGINE_SOURCE = """#!{python}
import os
import signal
import sys
import time

AUDIO_SUFFIXES = (".flac", ".wav", ".mp3", ".aac", ".m4a")

args = sys.argv[1:]
env = os.environ

if "-version" in args:
    print("ffmpeg version 6.1-fake Copyright (c) 2000-2024 the fake developers")
    sys.exit(0)

if env.get("FAKE_IGNORE_TERM"):
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

duration = env.get("FAKE_DURATION", "00:00:10.00")
h, m, s = duration.split(":")
total = int(h) * 3600 + int(m) * 60 + float(s)
source = args[args.index("-i") + 1] if "-i" in args else ""


def timecode(seconds):
    minutes, sec = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return "%02d:%02d:%05.2f" % (hours, minutes, sec)


if len(args) >= 2 and args[-2] == "-i":
    lines = ["Input #0, fake, from '%s':" % source]
    if not env.get("FAKE_NO_DURATION"):
        lines.append("  Duration: %s, start: 0.000000, bitrate: 4521 kb/s" % duration)
    if source.lower().endswith(AUDIO_SUFFIXES):
        lines += [
            "  Stream #0:0: Audio: flac, 44100 Hz, stereo, s16",
            "  Stream #0:1: Video: mjpeg (Baseline), yuvj420p, 500x500, 90k tbr, 90k tbn (attached pic)",
        ]
    else:
        lines += [
            "  Stream #0:0: Video: h264 (High), yuv420p, 1920x1080, 23.98 fps",
            "  Stream #0:1(eng): Audio: ac3, 48000 Hz, 5.1(side), fltp, 640 kb/s",
            "    Metadata:",
            "      title           : Surround 5.1",
            "  Stream #0:2(jpn): Audio: aac, 48000 Hz, stereo, fltp",
            "  Stream #0:3(fre): Subtitle: subrip",
            "    Metadata:",
            "      title           : Forced",
        ]
    lines.append("At least one output file must be specified")
    sys.stderr.write("\\n".join(lines) + "\\n")
    sys.exit(int(env.get("FAKE_PROBE_EXIT", "1")))

record = env.get("FAKE_RECORD")
if record:
    with open(record, "a", encoding="utf-8") as f:
        f.write("\\t".join(args) + "\\n")

output = [a for a in args if a != "-y"][-1]
steps = int(env.get("FAKE_STEPS", "5"))
delay = float(env.get("FAKE_STEP_DELAY", "0.02"))
for i in range(1, steps + 1):
    sys.stderr.write(
        "frame=%5d fps= 30 q=28.0 size=%8dkB time=%s bitrate= 838.9kbits/s speed=1.0x\\r"
        % (i * 30, i * 64, timecode(total * i / steps))
    )
    sys.stderr.flush()
    time.sleep(delay)

fail_match = env.get("FAKE_FAIL_MATCH")
code = int(env.get("FAKE_EXIT_CODE", "0"))
if fail_match and fail_match in source:
    code = code or 1
if code:
    sys.stderr.write("\\nError while decoding stream #0:1: Invalid data found when processing input\\n")
    sys.exit(code)

if not env.get("FAKE_SKIP_OUTPUT"):
    with open(output, "wb") as f:
        f.write(b"fake media")
sys.exit(0)
"""


@pytest.fixture
def caplog(caplog):
    """Routes loguru records into pytest's caplog."""
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def fake_engine(tmp_path: Path) -> Path:
    engine = tmp_path / "bin" / "ffmpeg"
    engine.parent.mkdir()
    engine.write_text(FAKE_ENGINE_SOURCE.format(python=sys.executable), encoding="utf-8")
    engine.chmod(engine.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return engine


@pytest.fixture(autouse=True)
def _clean_fake_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("FAKE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def settings(fake_engine: Path, output_dir: Path) -> ConvertorSettings:
    return ConvertorSettings(
        max_concurrency=2,
        output_directory_type=OutputDirectoryType.CUSTOM,
        custom_output_directory=output_dir,
        engine_path=fake_engine,
        hardware_acceleration=False,
    )


@pytest.fixture
def make_source(tmp_path: Path):
    """Creates a source file under tmp_path/src and returns its path."""
    source_dir = tmp_path / "src"
    source_dir.mkdir(exist_ok=True)

    def _make(name: str) -> Path:
        path = source_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"source media")
        return path

    return _make


@pytest.fixture
def video_probe() -> ProbeResult:
    return ProbeResult(
        duration_seconds=100.0,
        audio_tracks=(Track(1, "eng", "Surround 5.1"), Track(2, "jpn")),
        subtitle_tracks=(Track(3, "fre", "Forced"), Track(4)),
    )


@pytest.fixture
def make_video_job(make_source, video_probe):
    def _make(name: str = "movie.mkv", probe=video_probe, **settings) -> Job:
        return Job(
            make_source(name),
            MediaKind.VIDEO,
            EncodeSettings(output_format=OutputFormat.MP4, **settings),
            probe=probe,
        )

    return _make


@pytest.fixture
def make_audio_job(make_source):
    def _make(name: str = "song.flac", has_cover: bool = False, **settings) -> Job:
        settings.setdefault("output_format", OutputFormat.AAC)
        return Job(
            make_source(name),
            MediaKind.AUDIO,
            EncodeSettings(**settings),
            probe=ProbeResult(duration_seconds=200.0, has_cover_image=has_cover),
        )

    return _make
