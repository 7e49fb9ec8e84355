"""
Configuration Package for the Convertor.

This package centralizes the settings of the application. Static constants
(file extensions, encoder tables, timeouts, logging format) live in plain
modules, while the operator-tunable values (concurrency, default formats,
output directory) are gathered in the `ConvertorSettings` value defined in
`settings.py`. That value is passed explicitly to the scheduler, the plan
builder and the pipeline instead of being read from global state.

This package includes settings for:
- Audio and video file types and encoding parameters.
- Common application settings like logging formats, timeouts and the location
  of the user configuration file.
- User-overridable paths for the ffmpeg executable.
"""
