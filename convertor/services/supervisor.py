"""
Runs one transcoding engine invocation from launch to cleanup.

A `ProcessSupervisor` is created for exactly one job. It:
    1. checks its preconditions (engine, input, output directory) before spawning,
    2. launches the engine with the plan's argument list (no shell),
    3. reads the engine's diagnostic stream chunk by chunk, turning `time=`
       tokens into progress reports,
    4. stops the engine gracefully, then forcefully, when its cancellation
       token fires,
    5. classifies the exit (output path, `EngineExitNonZero`, `OutputMissing`
       or `Cancelled`),
    6. removes every temporary artifact of the plan, whatever happened.

The caller runs `run()` in a worker thread; the call blocks until the engine
has exited.
"""
import codecs
import os
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from ..config.common import (
    CANCEL_GRACE_SECONDS,
    DIAGNOSTIC_READ_SIZE,
    DIAGNOSTIC_TAIL_LINES,
)
from ..domain.exceptions import (
    Cancelled,
    EngineExitNonZero,
    EngineNotExecutable,
    EngineNotFound,
    InputUnreadable,
    OutputDirUnwritable,
    OutputMissing,
)
from ..utils.engine_utils import command_to_display, is_executable, resolve_engine
from .plan_builder import EncodePlan
from .progress import parse_progress

ProgressCallback = Callable[[float], None]


class CancellationToken:
    """
    A thread-safe, one-shot stop signal shared by a scheduler and a supervisor.

    `cancel()` may be called any number of times from any thread; callbacks run
    once, on the first call. A callback registered after cancellation runs
    immediately in the registering thread.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class ProcessSupervisor:
    """
    Owns a single engine process for one job.

    Attributes:
        engine (str): Engine executable, as a path or a command name on PATH.
        token (CancellationToken): Stop signal for this run.
        grace_period (float): Seconds between the cooperative stop signal and the kill.
    """

    def __init__(
        self,
        engine: str,
        token: Optional[CancellationToken] = None,
        grace_period: float = CANCEL_GRACE_SECONDS,
    ):
        self.engine = engine
        self.token = token or CancellationToken()
        self.grace_period = grace_period
        self._process: Optional[subprocess.Popen] = None
        self._process_lock = threading.Lock()
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run(self, plan: EncodePlan, on_progress: Optional[ProgressCallback] = None) -> Path:
        """
        Executes `plan` and returns the path of the produced file.

        Args:
            plan: The encode plan of the job.
            on_progress: Called from this thread with each new progress value,
                         at most once per chunk of diagnostic output.

        Returns:
            The output path, verified to exist.

        Raises:
            EngineNotFound, EngineNotExecutable, InputUnreadable, OutputDirUnwritable:
                A precondition failed; nothing was spawned.
            Cancelled: The token fired before or during the run.
            EngineExitNonZero: The engine exited with a non-zero code.
            OutputMissing: The engine exited with 0 but produced no file.
        """
        try:
            executable = self._check_preconditions(plan)
            if self.token.is_cancelled:
                raise Cancelled()
            return self._execute(executable, plan, on_progress)
        finally:
            self._remove_temporary_files(plan)

    # --- Preconditions ---

    def _check_preconditions(self, plan: EncodePlan) -> Path:
        executable = resolve_engine(self.engine)
        if executable is None or not executable.exists():
            raise EngineNotFound(self.engine)
        if not is_executable(executable):
            raise EngineNotExecutable(str(executable))

        source = plan.source_path
        if not source.is_file() or not os.access(source, os.R_OK):
            raise InputUnreadable(f"Input file is missing or unreadable: {source}")

        output_dir = plan.output_path.parent
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputDirUnwritable(f"Cannot create output directory {output_dir}: {e}") from e
        if not os.access(output_dir, os.W_OK):
            raise OutputDirUnwritable(f"Output directory is not writable: {output_dir}")
        return executable

    # --- Execution ---

    def _execute(
        self, executable: Path, plan: EncodePlan, on_progress: Optional[ProgressCallback]
    ) -> Path:
        cmd_list = [str(executable), *plan.arguments]
        logger.debug(f"[ProcessSupervisor] Job {plan.job_id}: {command_to_display(cmd_list)}")

        try:
            process = subprocess.Popen(
                cmd_list,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                shell=False,
            )
        except FileNotFoundError as e:
            raise EngineNotFound(str(executable)) from e
        except PermissionError as e:
            raise EngineNotExecutable(str(executable)) from e

        with self._process_lock:
            self._process = process
        self.token.add_callback(self._request_stop)
        try:
            tail = self._consume_diagnostics(process, plan.duration_seconds, on_progress)
            return_code = process.wait()
        finally:
            self.token.remove_callback(self._request_stop)
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stderr:
                process.stderr.close()
            with self._process_lock:
                self._process = None

        if self._stop_requested:
            logger.info(f"[ProcessSupervisor] Job {plan.job_id} stopped (exit code {return_code}).")
            raise Cancelled()
        if return_code != 0:
            raise EngineExitNonZero(return_code, "\n".join(tail))
        if not plan.output_path.is_file():
            raise OutputMissing(plan.output_path, return_code)
        return plan.output_path

    def _consume_diagnostics(
        self,
        process: subprocess.Popen,
        duration_seconds: float,
        on_progress: Optional[ProgressCallback],
    ) -> deque:
        """Reads stderr until EOF; returns the last diagnostic lines."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        tail: deque = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        pending_line = ""

        while True:
            data = process.stderr.read1(DIAGNOSTIC_READ_SIZE)
            if not data:
                break
            chunk = decoder.decode(data)
            if not chunk:
                continue

            value = parse_progress(chunk, duration_seconds)
            if value is not None and on_progress is not None:
                on_progress(value)

            lines = (pending_line + chunk).replace("\r", "\n").split("\n")
            pending_line = lines.pop()
            tail.extend(line for line in lines if line.strip())

        pending_line += decoder.decode(b"", final=True)
        if pending_line.strip():
            tail.append(pending_line)
        return tail

    # --- Cancellation ---

    def _request_stop(self) -> None:
        """Token callback: ask the engine to stop, then kill it after the grace period."""
        with self._process_lock:
            process = self._process
            if process is None or process.poll() is not None:
                return
            self._stop_requested = True
            try:
                process.terminate()
            except ProcessLookupError:
                return
        logger.debug(f"[ProcessSupervisor] Sent stop signal to engine (pid {process.pid}).")

        killer = threading.Thread(
            target=self._kill_after_grace,
            args=(process,),
            name=f"engine-killer-{process.pid}",
            daemon=True,
        )
        killer.start()

    def _kill_after_grace(self, process: subprocess.Popen) -> None:
        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"[ProcessSupervisor] Engine (pid {process.pid}) ignored the stop signal; killing it."
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass

    # --- Cleanup ---

    @staticmethod
    def _remove_temporary_files(plan: EncodePlan) -> None:
        for path in plan.temporary_files:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[ProcessSupervisor] Could not remove temporary file {path}: {e}")
