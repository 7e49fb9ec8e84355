import pytest

from convertor.domain.exceptions import ProbeFailed
from convertor.domain.media import Track
from convertor.services.prober import MediaProber, parse_duration, parse_probe_output

MKV_DIAGNOSTICS = """\
Input #0, matroska,webm, from 'movie.mkv':
  Metadata:
    title           : Some Movie
  Duration: 00:42:17.36, start: 0.000000, bitrate: 4521 kb/s
  Stream #0:0: Video: h264 (High), yuv420p(progressive), 1920x1080, 23.98 fps
  Stream #0:1(eng): Audio: ac3, 48000 Hz, 5.1(side), fltp, 640 kb/s (default)
    Metadata:
      title           : Surround 5.1
  Stream #0:2(jpn): Audio: aac (LC), 48000 Hz, stereo, fltp
  Stream #0:3(fre): Subtitle: subrip
    Metadata:
      title           : Forced
  Stream #0:4: Subtitle: ass
At least one output file must be specified
"""


def test_duration_is_parsed():
    assert parse_duration(MKV_DIAGNOSTICS) == pytest.approx(42 * 60 + 17.36)


def test_missing_duration_is_a_probe_failure():
    with pytest.raises(ProbeFailed):
        parse_probe_output("Input #0, matroska\n  Duration: N/A, bitrate: N/A\n")


def test_tracks_are_parsed_in_stream_order():
    facts = parse_probe_output(MKV_DIAGNOSTICS)
    assert facts.audio_tracks == (Track(1, "eng", "Surround 5.1"), Track(2, "jpn", ""))
    assert facts.subtitle_tracks == (Track(3, "fre", "Forced"), Track(4, "und", ""))
    assert facts.has_cover_image is False


def test_container_metadata_is_not_attached_to_a_track():
    facts = parse_probe_output(MKV_DIAGNOSTICS)
    assert all(t.title != "Some Movie" for t in facts.audio_tracks + facts.subtitle_tracks)


def test_attached_picture_is_detected():
    diagnostics = (
        "  Duration: 00:03:20.00, start: 0.000000, bitrate: 1000 kb/s\n"
        "  Stream #0:0: Audio: flac, 44100 Hz, stereo, s16\n"
        "  Stream #0:1: Video: mjpeg (Baseline), yuvj420p, 500x500, 90k tbn (attached pic)\n"
    )
    facts = parse_probe_output(diagnostics)
    assert facts.has_cover_image is True
    assert facts.audio_tracks == (Track(0),)


def test_stream_ids_in_brackets_are_accepted():
    diagnostics = (
        "  Duration: 00:00:10.00, start: 0.000000\n"
        "  Stream #0:1[0x1100](eng): Audio: ac3 (AC-3 / 0x332D4341), 48000 Hz\n"
    )
    assert parse_probe_output(diagnostics).audio_tracks == (Track(1, "eng"),)


def test_probe_accepts_inspect_only_exit_code(fake_engine, make_source):
    facts = MediaProber(str(fake_engine)).probe(make_source("movie.mkv"))
    assert facts.duration_seconds == pytest.approx(10.0)
    assert [t.index for t in facts.audio_tracks] == [1, 2]
    assert facts.subtitle_tracks == (Track(3, "fre", "Forced"),)


def test_probe_of_audio_file_detects_cover(fake_engine, make_source):
    facts = MediaProber(str(fake_engine)).probe(make_source("song.flac"))
    assert facts.has_cover_image is True


def test_probe_without_duration_fails(fake_engine, make_source, monkeypatch):
    monkeypatch.setenv("FAKE_NO_DURATION", "1")
    with pytest.raises(ProbeFailed):
        MediaProber(str(fake_engine)).probe(make_source("movie.mkv"))


def test_probe_with_unexpected_exit_code_fails(fake_engine, make_source, monkeypatch):
    monkeypatch.setenv("FAKE_PROBE_EXIT", "2")
    with pytest.raises(ProbeFailed, match="exit code 2"):
        MediaProber(str(fake_engine)).probe(make_source("movie.mkv"))


def test_probe_with_missing_engine_fails(tmp_path, make_source):
    with pytest.raises(ProbeFailed):
        MediaProber(str(tmp_path / "nowhere" / "ffmpeg")).probe(make_source("movie.mkv"))
