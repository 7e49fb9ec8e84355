"""
Decides where a job's converted file is written.

The output directory is shared by every job of a batch, so names are resolved
deterministically: a name that would overwrite the source gets a `_converted`
suffix, and a name already reserved by another job gets `_2`, `_3`, ...
Comparisons are case-insensitive because the default output locations live on
case-insensitive file systems on some platforms.
"""
from pathlib import Path
from typing import Iterable

from ..domain.media import OutputFormat

CONVERTED_SUFFIX = "_converted"


def _same_path(a: Path, b: Path) -> bool:
    return str(a.absolute()).casefold() == str(b.absolute()).casefold()


def resolve_output_path(
    source_path: Path,
    output_format: OutputFormat,
    output_dir: Path,
    reserved: Iterable[Path] = (),
) -> Path:
    """
    Computes the output path of a conversion.

    Args:
        source_path: The job's source file.
        output_format: Decides the extension (m4a for audio formats, mp4 for video).
        output_dir: Directory receiving the output.
        reserved: Output paths already claimed by other jobs.

    Returns:
        `<output_dir>/<source stem>.<ext>`, adjusted so it neither equals the
        source path nor any reserved path.
    """
    stem = source_path.stem
    extension = output_format.extension
    candidate = output_dir / f"{stem}.{extension}"
    if _same_path(candidate, source_path):
        stem = f"{stem}{CONVERTED_SUFFIX}"
        candidate = output_dir / f"{stem}.{extension}"

    taken = {str(p.absolute()).casefold() for p in reserved}
    counter = 1
    while str(candidate.absolute()).casefold() in taken or _same_path(candidate, source_path):
        counter += 1
        candidate = output_dir / f"{stem}_{counter}.{extension}"
    return candidate
