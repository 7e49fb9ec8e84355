"""
Utilities Package for the Convertor Application.

This package contains small helpers reused across the application that are not
specific to any single part of the conversion domain.

Modules:
    - engine_utils.py: Locates and verifies the transcoding engine executable
      and formats its command lines for logging.
    - format_utils.py: Converts durations, sizes and progress values into
      human-readable strings for log messages.
"""
