import threading
import time

import pytest

from convertor.domain.exceptions import (
    Cancelled,
    EngineExitNonZero,
    EngineNotExecutable,
    EngineNotFound,
    InputUnreadable,
    OutputDirUnwritable,
    OutputMissing,
)
from convertor.domain.media import VideoCodec
from convertor.services.plan_builder import EncodePlanBuilder
from convertor.services.supervisor import CancellationToken, ProcessSupervisor


@pytest.fixture
def plan(make_video_job, output_dir):
    job = make_video_job().snapshot()
    return EncodePlanBuilder().build(job, output_dir / "movie.mp4")


@pytest.fixture
def plan_with_thumbnail(make_video_job, output_dir):
    job = make_video_job(video_codec=VideoCodec.HEVC_COPY).snapshot()
    output_dir.mkdir(parents=True, exist_ok=True)
    thumbnail = output_dir / f".thumb_{job.id}.jpg"
    thumbnail.write_bytes(b"jpeg")
    return EncodePlanBuilder().build(job, output_dir / "movie.mp4", thumbnail)


def _run_in_thread(supervisor, plan, on_progress=None):
    outcome = {}

    def target():
        try:
            outcome["result"] = supervisor.run(plan, on_progress)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


# --- CancellationToken ---


def test_token_runs_callbacks_once():
    token = CancellationToken()
    calls = []
    token.add_callback(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    assert calls == ["a"]
    assert token.is_cancelled


def test_callback_added_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []
    token.add_callback(lambda: calls.append("late"))
    assert calls == ["late"]


def test_removed_callback_is_not_run():
    token = CancellationToken()
    calls = []
    callback = lambda: calls.append("x")  # noqa: E731
    token.add_callback(callback)
    token.remove_callback(callback)
    token.cancel()
    assert calls == []


# --- Successful runs ---


def test_successful_run_returns_output_and_reports_progress(fake_engine, plan, monkeypatch):
    monkeypatch.setenv("FAKE_DURATION", "00:01:40.00")
    values = []
    result = ProcessSupervisor(str(fake_engine)).run(plan, values.append)

    assert result == plan.output_path
    assert result.is_file()
    assert values
    assert values == sorted(values)
    assert all(0.0 <= v <= 1.0 for v in values)
    assert values[-1] == pytest.approx(1.0)


def test_run_without_progress_callback(fake_engine, plan):
    assert ProcessSupervisor(str(fake_engine)).run(plan) == plan.output_path


# --- Failures ---


def test_missing_output_after_clean_exit(fake_engine, plan, monkeypatch):
    monkeypatch.setenv("FAKE_SKIP_OUTPUT", "1")
    with pytest.raises(OutputMissing):
        ProcessSupervisor(str(fake_engine)).run(plan)


def test_non_zero_exit_carries_code_and_diagnostic_tail(fake_engine, plan, monkeypatch):
    monkeypatch.setenv("FAKE_EXIT_CODE", "3")
    with pytest.raises(EngineExitNonZero) as excinfo:
        ProcessSupervisor(str(fake_engine)).run(plan)

    assert excinfo.value.code == 3
    assert "Invalid data found" in excinfo.value.diagnostic_tail
    assert "Invalid data found" in str(excinfo.value)


def test_missing_engine_is_reported_before_spawning(tmp_path, plan):
    with pytest.raises(EngineNotFound):
        ProcessSupervisor(str(tmp_path / "nowhere" / "ffmpeg")).run(plan)


def test_engine_without_execute_permission(tmp_path, plan):
    engine = tmp_path / "ffmpeg-noexec"
    engine.write_text("not a program")
    engine.chmod(0o644)
    with pytest.raises(EngineNotExecutable):
        ProcessSupervisor(str(engine)).run(plan)


def test_missing_input_is_reported(fake_engine, plan):
    plan.source_path.unlink()
    with pytest.raises(InputUnreadable):
        ProcessSupervisor(str(fake_engine)).run(plan)


def test_output_directory_that_cannot_be_created(fake_engine, make_video_job, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    job = make_video_job().snapshot()
    plan = EncodePlanBuilder().build(job, blocker / "sub" / "movie.mp4")
    with pytest.raises(OutputDirUnwritable):
        ProcessSupervisor(str(fake_engine)).run(plan)


# --- Cancellation ---


def test_already_cancelled_token_spawns_nothing(fake_engine, plan, tmp_path, monkeypatch):
    record = tmp_path / "invocations.txt"
    monkeypatch.setenv("FAKE_RECORD", str(record))
    token = CancellationToken()
    token.cancel()

    with pytest.raises(Cancelled):
        ProcessSupervisor(str(fake_engine), token).run(plan)
    assert not record.exists()


def test_cancel_during_run_ends_cancelled(fake_engine, plan, monkeypatch):
    monkeypatch.setenv("FAKE_STEPS", "400")
    monkeypatch.setenv("FAKE_STEP_DELAY", "0.05")
    token = CancellationToken()
    started = threading.Event()
    supervisor = ProcessSupervisor(str(fake_engine), token, grace_period=0.5)

    thread, outcome = _run_in_thread(supervisor, plan, lambda _v: started.set())
    assert started.wait(10)
    began = time.monotonic()
    token.cancel()
    thread.join(10)

    assert not thread.is_alive()
    assert isinstance(outcome.get("error"), Cancelled)
    assert time.monotonic() - began < 5
    assert supervisor.stop_requested


def test_engine_ignoring_stop_signal_is_killed(fake_engine, plan, monkeypatch):
    monkeypatch.setenv("FAKE_STEPS", "400")
    monkeypatch.setenv("FAKE_STEP_DELAY", "0.05")
    monkeypatch.setenv("FAKE_IGNORE_TERM", "1")
    token = CancellationToken()
    started = threading.Event()
    supervisor = ProcessSupervisor(str(fake_engine), token, grace_period=0.2)

    thread, outcome = _run_in_thread(supervisor, plan, lambda _v: started.set())
    assert started.wait(10)
    token.cancel()
    thread.join(10)

    assert not thread.is_alive()
    assert isinstance(outcome.get("error"), Cancelled)


# --- Cleanup ---


@pytest.mark.parametrize(
    "env",
    [{}, {"FAKE_EXIT_CODE": "1"}, {"FAKE_SKIP_OUTPUT": "1"}],
    ids=["success", "non-zero", "missing-output"],
)
def test_temporary_files_are_removed(fake_engine, plan_with_thumbnail, monkeypatch, env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    (thumbnail,) = plan_with_thumbnail.temporary_files

    try:
        ProcessSupervisor(str(fake_engine)).run(plan_with_thumbnail)
    except Exception:
        pass
    assert not thumbnail.exists()


def test_temporary_files_are_removed_on_cancellation(fake_engine, plan_with_thumbnail):
    (thumbnail,) = plan_with_thumbnail.temporary_files
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        ProcessSupervisor(str(fake_engine), token).run(plan_with_thumbnail)
    assert not thumbnail.exists()


def test_temporary_files_are_removed_when_preconditions_fail(tmp_path, plan_with_thumbnail):
    (thumbnail,) = plan_with_thumbnail.temporary_files
    with pytest.raises(EngineNotFound):
        ProcessSupervisor(str(tmp_path / "nowhere" / "ffmpeg")).run(plan_with_thumbnail)
    assert not thumbnail.exists()
