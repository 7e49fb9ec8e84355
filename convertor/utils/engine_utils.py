"""
This module provides helpers for locating and verifying the transcoding engine.

The engine is an external executable (ffmpeg). It may be configured as an
absolute path, found in a configured directory, or looked up on the system's
PATH by name. These helpers are shared by the media prober, the process
supervisor and the CLI start-up check.
"""
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger


def command_to_display(cmd_list: Sequence[str]) -> str:
    """
    Formats an argument list as a single shell-quoted string for logging.

    The result can be pasted into a terminal to reproduce an invocation; it is
    never executed through a shell by the application.
    """
    if os.name == "nt":
        return subprocess.list2cmdline(list(cmd_list))
    return shlex.join(cmd_list)


def resolve_engine(executable: str) -> Optional[Path]:
    """
    Resolves an engine executable to a path on disk.

    Args:
        executable: A path (absolute or relative, containing a separator) or a
                    bare command name to look up on PATH.

    Returns:
        The resolved path, or None when a bare name is not found on PATH.
        Paths containing a separator are returned as given, even if they do
        not exist, so the caller can report precisely what is missing.
    """
    candidate = Path(executable).expanduser()
    if candidate.is_absolute() or os.sep in executable or (os.altsep and os.altsep in executable):
        return candidate
    found = shutil.which(executable)
    return Path(found) if found else None


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def engine_command(executable: str, arguments: Sequence[str]) -> List[str]:
    """Builds the full command list: the resolved engine followed by its arguments."""
    resolved = resolve_engine(executable)
    return [str(resolved) if resolved else executable, *arguments]


def verify_engine(executable: str) -> Optional[str]:
    """
    Verifies that the engine is installed, accessible and can be executed.

    Runs `<engine> -version` and logs the first line of the output on success,
    or a detailed error message when the engine is missing or fails. This is a
    start-up check only: jobs still report their own engine errors.

    Returns:
        The first line of the version output, or None if the check failed.
    """
    resolved = resolve_engine(executable)
    if resolved is None or not resolved.exists():
        logger.error(
            f"Transcoding engine '{executable}' not found. Install ffmpeg, add it to PATH, "
            "or set 'paths.ffmpeg_dir' in config.user.yaml."
        )
        return None

    try:
        result = subprocess.run(
            [str(resolved), "-version"],
            check=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=30,
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"Engine version command failed (return code {e.returncode}):\n{e.stderr}")
        return None
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f"Could not run the transcoding engine '{resolved}': {e}")
        return None

    lines = result.stdout.splitlines()
    first_line = lines[0] if lines else ""
    logger.info(f"Engine version check successful: {first_line}")
    return first_line
