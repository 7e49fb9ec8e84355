"""
Common configuration settings used throughout the application.

This module contains the constants shared by every layer of the Convertor:
the logging format, the location of the optional user configuration file,
timeouts used when supervising the engine, and the bounds of the scheduler.
Values that an operator is expected to change per run are not defined here;
they belong to `ConvertorSettings` (see `settings.py`).
"""
from pathlib import Path

# --- User-Defined Configuration ---
# The optional 'config.user.yaml' file at the project root. It may contain a
# 'paths' section (location of the ffmpeg executable) and a 'conversion'
# section (defaults for new jobs). See `settings.load_settings`.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"


# --- Logging Configuration ---

# The format string for the Loguru logger.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)

# Plain-text file, inside the output directory, that collects the diagnostic
# tail of every failed job of a batch.
ERROR_LOG_FILE_NAME = "convertor_errors.txt"

# YAML report, inside the output directory, listing every job of a finished
# batch with its outcome. Entries of later batches are appended.
REPORT_LOG_FILE_NAME = "convertor_report.yaml"


# --- Engine Supervision ---

# Executable name of the transcoding engine when no explicit path is configured.
ENGINE_EXECUTABLE_NAME = "ffmpeg"

# Seconds to wait after the cooperative stop signal before force-killing the engine.
CANCEL_GRACE_SECONDS = 0.5

# Upper bound, in seconds, for an inspect-only probe invocation.
PROBE_TIMEOUT_SECONDS = 60

# Bytes requested per read of the engine's diagnostic stream.
DIAGNOSTIC_READ_SIZE = 4096

# Number of trailing diagnostic lines kept for the error message of a failed job.
DIAGNOSTIC_TAIL_LINES = 20


# --- Scheduler Bounds ---

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 16
DEFAULT_MAX_CONCURRENCY = 4

# Worker threads kept by the scheduler's pool. The pool is sized for the upper
# bound; the scheduler itself enforces the configured limit.
WORKER_POOL_SIZE = MAX_CONCURRENCY
