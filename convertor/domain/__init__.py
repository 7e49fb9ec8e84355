"""
This package contains the core domain models of the Convertor application.

The domain layer represents the fundamental concepts of a conversion as this
application sees it. It is independent of the services that probe files and
supervise the engine, so the rules it encodes (legal status transitions,
setting validation) can be tested without running any process.

Modules:
    exceptions.py: The exception hierarchy, rooted at `ConvertorException`.
                   `ConversionError` subclasses are the per-job outcomes of a
                   process supervisor run.
    media.py: Media kinds, output formats, codecs, presets and the
              `ProbeResult` facts returned by the media prober.
    job.py: The `Job` model, its `EncodeSettings`, the `JobStatus` state
            machine and the immutable `JobSnapshot` handed to readers.
"""
