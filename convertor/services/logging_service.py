"""
This module provides the file logs written next to the converted files.

They complement the console log (loguru) with records that stay in the output
directory after the run:

- `ErrorLog` appends a human-readable entry for every failed job to a plain
  text file, including the engine's diagnostic tail.
- `ConversionReport` keeps a machine-readable YAML list of every job a batch
  finished, with its outcome, so a batch can be audited or post-processed.

Writing these files must never disturb a conversion: failures are reported
through loguru and swallowed.
"""
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Union

import yaml
from loguru import logger

from ..config.common import ERROR_LOG_FILE_NAME, REPORT_LOG_FILE_NAME
from ..domain.job import JobSnapshot
from ..utils.format_utils import formatted_size


class Log:
    """
    A base class for the file logs.

    Attributes:
        log_dir (Path): Directory containing the log file; created when it does not exist.
        log_file_path (Path): The log file itself, defined by the subclass.
    """

    # A separator line used in text-based logs for readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_dir: Path):
        self.log_file_path: Path
        self.log_dir: Path = log_dir.resolve()

    def _ensure_dir(self) -> bool:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create log directory {self.log_dir}: {e}")
            return False
        return True

    def write(self, log_content: Union[dict, list, str]):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """
    Appends error entries to a plain text file.

    Each entry is made of the given message parts, one per line, followed by a
    separator line, which keeps the file a readable chronological record.
    """

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILE_NAME):
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Appends one entry made of `error_messages`.

        If the file cannot be written, the messages are sent to the console
        logger instead so that they are not lost.
        """
        if not error_messages:
            return

        content_to_write = "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"
        if not self._ensure_dir():
            return
        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            logger.error("Original error messages attempted to log:")
            for msg in error_messages:
                logger.error(f"  - {msg}")

    def write_job(self, job: JobSnapshot):
        """Appends the entry of a failed job."""
        self.write(
            f"[{datetime.now().isoformat(timespec='seconds')}] {job.source_path}",
            f"job id: {job.id}",
            f"output format: {job.settings.output_format.value}",
            job.error_message or "Conversion failed",
        )


class ConversionReport(Log):
    """
    Maintains a YAML list of finished jobs.

    To keep the file a valid YAML list, `write` reads the existing entries,
    appends the new ones with continuing indexes, and rewrites the whole file.
    """

    def __init__(self, report_dir: Path, filename: str = REPORT_LOG_FILE_NAME):
        super().__init__(report_dir)
        self.log_file_path = self.log_dir / filename

    @staticmethod
    def entry_for(job: JobSnapshot) -> Dict:
        entry = {
            "source": str(job.source_path),
            "media_kind": job.media_kind.value,
            "output_format": job.settings.output_format.value,
            "status": job.status.value,
            "ended_datetime": datetime.now().isoformat(timespec="seconds"),
        }
        if job.output_path is not None:
            entry["output"] = str(job.output_path)
            try:
                entry["output_size"] = formatted_size(job.output_path.stat().st_size)
            except OSError:
                pass
        if job.status_message:
            # Only the first line; the full diagnostic tail goes to the error log.
            entry["message"] = job.status_message.splitlines()[0]
        return entry

    def _load_entries(self) -> List[Dict]:
        if not self.log_file_path.is_file():
            return []
        try:
            with self.log_file_path.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error reading report {self.log_file_path}: {e}. Starting a new report.")
            return []
        if loaded is None:
            return []
        if not isinstance(loaded, list):
            logger.warning(
                f"Report {self.log_file_path} contained unexpected data. Starting a new report."
            )
            return []
        return loaded

    def write(self, jobs: Iterable[JobSnapshot]):
        new_entries = [self.entry_for(job) for job in jobs]
        if not new_entries:
            return
        if not self._ensure_dir():
            return

        entries = self._load_entries()
        current_max_index = max(
            (entry.get("index", 0) for entry in entries if isinstance(entry, dict)),
            default=0,
        )
        for offset, entry in enumerate(new_entries, start=1):
            entry["index"] = current_max_index + offset
        entries.extend(new_entries)

        try:
            with self.log_file_path.open("w", encoding="utf-8") as f:
                yaml.dump(
                    entries,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True,
                    indent=4,
                    width=220,
                )
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to write report {self.log_file_path}: {e}")
            return
        logger.info(f"Wrote {len(new_entries)} entries to {self.log_file_path}")
