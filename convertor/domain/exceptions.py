"""
Defines custom exception types for the Convertor application.

These exceptions allow for specific and expressive error handling throughout
the conversion pipeline. Instead of catching a generic `Exception`, the
scheduler catches `ConversionError` subclasses raised by a process supervisor
and turns each into the matching terminal status of the job.

All custom exceptions inherit from the base `ConvertorException`.
"""
from typing import Optional


class ConvertorException(Exception):
    """Base class for all custom exceptions in the Convertor application."""

    pass


# --- Configuration and Job Model Exceptions ---
class ConfigurationError(ConvertorException):
    """Raised when a configuration value is outside its accepted range."""

    pass


class InvalidSettings(ConvertorException):
    """
    Raised when the encode settings of a job are invalid.

    Settings are validated when a job is created and every time they are
    edited, so the plan builder never sees an invalid combination (for
    example an audio job asking for a video container, or a selected track
    index the source does not have).
    """

    pass


class JobNotEditable(ConvertorException):
    """Raised when encode settings are edited on a job that has left 'pending'."""

    pass


class InvalidTransition(ConvertorException):
    """Raised when a job is asked to move along an edge its state machine does not have."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id}: illegal status transition {current} -> {requested}"
        )


class UnsupportedMediaType(ConvertorException):
    """Raised when a source file's extension is neither a known audio nor video type."""

    pass


# --- Probe Specific Exceptions ---
class ProbeFailed(ConvertorException):
    """
    Raised when the media prober cannot obtain the facts of a source file.

    This is not fatal to submission: the job is still added, with empty track
    lists and default settings.
    """

    pass


# --- Conversion Specific Exceptions ---
class ConversionError(ConvertorException):
    """Base class for the per-job outcomes of a process supervisor run that are not a success."""

    pass


class EngineNotFound(ConversionError):
    """Raised before spawning when the engine executable does not exist."""

    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(f"Transcoding engine not found: {engine}")


class EngineNotExecutable(ConversionError):
    """Raised before spawning when the engine exists but lacks execute permission."""

    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(f"Transcoding engine is not executable: {engine}")


class InputUnreadable(ConversionError):
    """Raised before spawning when the source file is missing or cannot be read."""

    pass


class OutputDirUnwritable(ConversionError):
    """Raised before spawning when the output directory cannot be created or written."""

    pass


class EngineExitNonZero(ConversionError):
    """
    Raised when a conversion invocation exits with a non-zero code on its own.

    Carries the exit code and the tail of the engine's diagnostic stream, which
    becomes the user-visible error message of the failed job.
    """

    def __init__(self, code: int, diagnostic_tail: str = ""):
        self.code = code
        self.diagnostic_tail = diagnostic_tail
        message = f"Transcoding engine exited with code {code}"
        if diagnostic_tail:
            message = f"{message}:\n{diagnostic_tail}"
        super().__init__(message)


class OutputMissing(ConversionError):
    """
    Raised when the engine reports success but the declared output file is absent.

    This guards against the engine exiting 0 while writing to an unreachable path.
    """

    def __init__(self, output_path, code: Optional[int] = 0):
        self.output_path = output_path
        self.code = code
        super().__init__(
            f"Transcoding engine reported success but the output file is missing: {output_path}"
        )


class Cancelled(ConversionError):
    """
    Raised when a run ends because its cancellation token fired.

    This is not an error but a control flow mechanism: the scheduler maps it to
    the 'cancelled' status, never to 'failed', whatever exit code the engine
    produced after the stop signal.
    """

    def __init__(self, message: str = "Conversion cancelled"):
        super().__init__(message)
