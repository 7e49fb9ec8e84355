
import pytest

from convertor.domain.media import OutputFormat, VideoCodec, VideoQuality, VideoResolution
from convertor.services.plan_builder import (
    EncodePlanBuilder,
    ThumbnailExtractor,
    compute_adaptive_bitrate,
    select_video_bitrate,
)


def _value_after(args, flag):
    return args[args.index(flag) + 1]


def _maps(args):
    return [args[i + 1] for i, a in enumerate(args) if a == "-map"]


# --- Adaptive bitrate ---


def test_adaptive_bitrate_spreads_remaining_budget_over_duration():
    assert compute_adaptive_bitrate(10, 100, 256) == 582


def test_adaptive_bitrate_is_floored_at_500():
    assert compute_adaptive_bitrate(1, 100, 256) == 500
    assert compute_adaptive_bitrate(10, 1000, 320) == 500


def test_adaptive_bitrate_needs_a_duration():
    with pytest.raises(ValueError):
        compute_adaptive_bitrate(10, 0, 256)


def test_bitrate_priority(make_video_job):
    job = make_video_job(custom_bitrate_kbps=3000, max_output_size_mb=10).snapshot()
    assert select_video_bitrate(job.settings, 100) == 3000

    job = make_video_job("b.mkv", max_output_size_mb=10).snapshot()
    assert select_video_bitrate(job.settings, 100) == 582
    # Unknown duration falls back to the quality preset.
    assert select_video_bitrate(job.settings, 0) == VideoQuality.HIGH.bitrate_kbps


# --- Determinism ---


def test_build_is_deterministic(make_video_job, tmp_path):
    job = make_video_job(
        video_codec=VideoCodec.H265,
        max_output_size_mb=50,
        selected_audio_track=2,
        selected_subtitle_track=3,
    ).snapshot()
    builder = EncodePlanBuilder(hardware_acceleration=False)
    output = tmp_path / "out" / "movie.mp4"
    assert builder.build(job, output).arguments == builder.build(job, output).arguments


# --- Audio jobs ---


def test_aac_audio_job_without_cover(make_audio_job, tmp_path):
    job = make_audio_job(audio_bitrate_kbps=320).snapshot()
    output = tmp_path / "song.m4a"
    plan = EncodePlanBuilder().build(job, output)
    args = list(plan.arguments)

    assert _maps(args) == ["0:a"]
    assert "-vn" in args
    assert _value_after(args, "-c:a") == "aac"
    assert _value_after(args, "-b:a") == "320k"
    assert args[-2:] == ["-y", str(output)]
    assert plan.temporary_files == ()


def test_alac_audio_job_keeps_cover_and_has_no_bitrate(make_audio_job, tmp_path):
    job = make_audio_job(output_format=OutputFormat.ALAC, has_cover=True).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "song.m4a").arguments)

    assert _maps(args) == ["0:a", "0:v"]
    assert _value_after(args, "-c:a") == "alac"
    assert _value_after(args, "-c:v") == "copy"
    assert _value_after(args, "-disposition:v") == "attached_pic"
    assert "-b:a" not in args
    assert _value_after(args, "-map_metadata") == "0"


# --- Video jobs ---


def test_reencode_uses_software_encoder_scale_and_faststart(make_video_job, tmp_path):
    job = make_video_job(
        video_codec=VideoCodec.H264,
        resolution=VideoResolution.R720P,
        quality=VideoQuality.MEDIUM,
    ).snapshot()
    args = list(EncodePlanBuilder(hardware_acceleration=False).build(job, tmp_path / "m.mp4").arguments)

    assert _value_after(args, "-c:v") == "libx264"
    assert _value_after(args, "-b:v") == "2000k"
    assert _value_after(args, "-vf") == "scale=-2:720"
    assert _value_after(args, "-movflags") == "+faststart"
    assert "-tag:v" not in args


def test_reencode_h265_with_hardware_encoder_is_tagged(make_video_job, tmp_path):
    job = make_video_job(video_codec=VideoCodec.H265).snapshot()
    args = list(EncodePlanBuilder(hardware_acceleration=True).build(job, tmp_path / "m.mp4").arguments)

    assert _value_after(args, "-c:v") == "hevc_videotoolbox"
    assert _value_after(args, "-tag:v") == "hvc1"


def test_reencode_applies_adaptive_bitrate(make_video_job, tmp_path):
    job = make_video_job(max_output_size_mb=10, audio_bitrate_kbps=256).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "m.mp4").arguments)
    assert _value_after(args, "-b:v") == "582k"
    assert _value_after(args, "-b:a") == "256k"


def test_selected_audio_track_is_mapped_by_index(make_video_job, tmp_path):
    job = make_video_job(selected_audio_track=2).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "m.mp4").arguments)
    assert _maps(args) == ["0:v:0", "0:2"]


def test_without_selection_first_audio_is_optional(make_video_job, tmp_path):
    job = make_video_job(probe=None).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "m.mp4").arguments)
    assert _maps(args) == ["0:v:0", "0:a:0?"]


def test_selected_subtitle_carries_language_and_title(make_video_job, tmp_path):
    job = make_video_job(selected_subtitle_track=3).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "m.mp4").arguments)

    assert "0:3" in _maps(args)
    assert _value_after(args, "-c:s") == "mov_text"
    metadata = [args[i + 1] for i, a in enumerate(args) if a == "-metadata:s:s:0"]
    assert metadata == ["language=fre", "title=Forced"]


def test_undetermined_subtitle_language_is_not_copied(make_video_job, tmp_path):
    job = make_video_job(selected_subtitle_track=4).snapshot()
    args = list(EncodePlanBuilder().build(job, tmp_path / "m.mp4").arguments)
    assert "-metadata:s:s:0" not in args


def test_passthrough_copies_video_and_audio(make_video_job, tmp_path):
    job = make_video_job(video_codec=VideoCodec.HEVC_COPY, selected_audio_track=1).snapshot()
    plan = EncodePlanBuilder(hardware_acceleration=True).build(job, tmp_path / "m.mp4")
    args = list(plan.arguments)

    assert _value_after(args, "-c:v") == "copy"
    assert _value_after(args, "-tag:v") == "hvc1"
    assert _value_after(args, "-c:a") == "copy"
    assert _maps(args) == ["0:v:0", "0:1"]
    assert "-b:v" not in args
    assert plan.temporary_files == ()


def test_passthrough_embeds_thumbnail_as_temporary_artifact(make_video_job, tmp_path):
    job = make_video_job(video_codec=VideoCodec.HEVC_COPY).snapshot()
    thumbnail = tmp_path / "out" / f".thumb_{job.id}.jpg"
    plan = EncodePlanBuilder().build(job, tmp_path / "out" / "m.mp4", thumbnail)
    args = list(plan.arguments)

    inputs = [args[i + 1] for i, a in enumerate(args) if a == "-i"]
    assert inputs == [str(job.source_path), str(thumbnail)]
    assert _value_after(args, "-c:v:1") == "mjpeg"
    assert _value_after(args, "-disposition:v:1") == "attached_pic"
    assert plan.temporary_files == (thumbnail,)


def test_plan_carries_duration(make_video_job, tmp_path):
    plan = EncodePlanBuilder().build(make_video_job().snapshot(), tmp_path / "m.mp4")
    assert plan.duration_seconds == 100.0
    assert plan.output_path == tmp_path / "m.mp4"


# --- Thumbnail extraction ---


def test_thumbnail_path_is_hidden_and_per_job(tmp_path):
    assert ThumbnailExtractor.thumbnail_path_for("abc", tmp_path) == tmp_path / ".thumb_abc.jpg"


def test_thumbnail_extraction_writes_image(fake_engine, make_source, tmp_path):
    destination = tmp_path / "out" / ".thumb_x.jpg"
    result = ThumbnailExtractor(str(fake_engine)).extract(make_source("m.mkv"), 100.0, destination)
    assert result == destination
    assert destination.is_file()


def test_thumbnail_failure_is_soft_and_logged(fake_engine, make_source, tmp_path, monkeypatch, caplog):
    monkeypatch.setenv("FAKE_EXIT_CODE", "1")
    destination = tmp_path / "out" / ".thumb_x.jpg"
    result = ThumbnailExtractor(str(fake_engine)).extract(make_source("m.mkv"), 100.0, destination)

    assert result is None
    assert not destination.exists()
    assert any(r.levelname == "WARNING" for r in caplog.records)


def test_thumbnail_skipped_without_duration(fake_engine, make_source, tmp_path, caplog):
    result = ThumbnailExtractor(str(fake_engine)).extract(make_source("m.mkv"), 0, tmp_path / "t.jpg")
    assert result is None
    assert any(r.levelname == "WARNING" for r in caplog.records)


def test_thumbnail_with_missing_engine_is_soft(make_source, tmp_path):
    extractor = ThumbnailExtractor(str(tmp_path / "missing" / "ffmpeg"))
    assert extractor.extract(make_source("m.mkv"), 100.0, tmp_path / "t.jpg") is None
