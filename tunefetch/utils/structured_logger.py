"""
Structured logging of job lifecycle events.
Provides JSON-formatted logs with context and metadata alongside console output.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable entries.

    Usage:
        logger = StructuredLogger("tunefetch", log_dir=Path("logs"))
        logger.info("job_completed", job_id="3f2a", size_bytes=4812211)
    """

    def __init__(self, name: str, log_dir: Path | None = None):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = console only)
        """
        self.name = name
        self._logger = logging.getLogger(name)

        self._json_file = None
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            json_log_path = log_dir / f"tunefetch_{timestamp}.jsonl"
            self._json_file = open(json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
        }

    def _format_message(self, event: str, **context) -> str:
        """Format message for console output."""
        parts = [f"[{event}]"]
        parts.extend(f"{key}={value}" for key, value in context.items())
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def log(self, level: int, event: str, **context) -> None:
        self._logger.log(level, self._format_message(event, **context))
        self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self.log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self.log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self.log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self.log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class JobEventLogger:
    """Specialized logger for job and playlist events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def job_started(self, job_id: str, title: str, quality: int, output_path: str):
        self.logger.info(
            "job_started",
            job_id=job_id,
            title=title,
            quality=quality,
            output_path=output_path,
        )

    def job_completed(self, job_id: str, title: str, size_bytes: int, duration_s: float):
        self.logger.info(
            "job_completed",
            job_id=job_id,
            title=title,
            size_bytes=size_bytes,
            size_mb=round(size_bytes / (1024 * 1024), 2),
            duration_s=round(duration_s, 2),
        )

    def job_failed(self, job_id: str, error: str, reason_code: str):
        self.logger.error(
            "job_failed", job_id=job_id, error=error, reason_code=reason_code
        )

    def tagging_failed(self, job_id: str, error: str):
        self.logger.warning("tagging_failed", job_id=job_id, error=error)

    def playlist_expanded(self, playlist_id: str, title: str, item_count: int):
        self.logger.info(
            "playlist_expanded",
            playlist_id=playlist_id,
            title=title,
            item_count=item_count,
        )

    def archive_built(self, playlist_id: str, archive_path: str, size_bytes: int):
        self.logger.info(
            "archive_built",
            playlist_id=playlist_id,
            archive_path=archive_path,
            size_bytes=size_bytes,
        )

    def archive_failed(self, playlist_id: str, error: str):
        self.logger.error("archive_failed", playlist_id=playlist_id, error=error)


def create_event_logger(log_dir: Path | None = None) -> JobEventLogger:
    """Creates the job event logger, writing JSONL into `log_dir` when given."""
    return JobEventLogger(StructuredLogger("tunefetch.events", log_dir=log_dir))
