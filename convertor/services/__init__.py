"""
Services Package for the Convertor.

This package contains the service layer: the classes and functions that do the
work of a conversion, between the pipeline (what to convert, and when) and the
domain model (jobs, settings, probe facts).

- **Media Prober (`prober`):** learns the duration, tracks and cover image of
  a source file from an inspect-only engine invocation.
- **Encode Plan Builder (`plan_builder`):** turns a job into the engine's
  argument list, including the adaptive bitrate, and extracts passthrough
  preview images.
- **Progress Parser (`progress`):** maps the engine's `time=` status lines to
  a progress fraction.
- **Process Supervisor (`supervisor`):** runs one engine process, with
  cancellation, exit classification and temporary file cleanup.
- **Job Store (`job_store`) and Scheduler (`scheduler`):** keep the jobs and
  run them under a concurrency limit.
- **Output Paths (`output_paths`):** collision-free output file names.
- **Logging Service (`logging_service`):** error log and YAML report written
  next to the converted files.
"""
