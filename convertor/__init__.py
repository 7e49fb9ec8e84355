"""
This file marks the 'convertor' directory as a Python package.

The package is organised in layers, mirroring how a conversion flows through
the application:

    config/    static constants and the explicit `ConvertorSettings` value.
    domain/    jobs, media facts and the exception hierarchy.
    services/  probing, planning, process supervision, the job store and
               the scheduler.
    pipeline/  the submission surface used by the CLI (add files, start,
               wait, summarise).
    utils/     small helpers for formatting and locating the engine.
"""

__version__ = "1.0.0"
