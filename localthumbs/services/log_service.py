"""Structured event log for crawler runs.

Every event becomes one JSON line in ``<log_dir>/json/year=YYYY/month=MM/day=DD/events.jsonl``
and is also emitted on the ``localthumbs.events`` logger for the console.
Query with DuckDB: SELECT * FROM read_json_auto('logs/json/**/*.jsonl', hive_partitioning=true)
"""

import json
import logging
import threading
from datetime import UTC, datetime
from functools import partialmethod
from pathlib import Path
from typing import Any

from localthumbs.config import get_settings

event_logger = logging.getLogger("localthumbs.events")

# Categories used by the crawler: app, scan, pipeline, upload, cache, scheduler
EVENTS_FILE = "events.jsonl"


class LogService:
    """Appends crawler events to daily JSONL partitions.

    Writes are serialized with a lock because jobs log from worker threads.
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        self._log_dir = log_dir
        self._write_lock = threading.Lock()
        self.run_id: str | None = None

    @property
    def log_dir(self) -> Path:
        return self._log_dir if self._log_dir is not None else get_settings().log_directory

    def partition_dir(self, dt: datetime) -> Path:
        """Day partition for ``dt``, created on demand."""
        path = self.log_dir / "json" / dt.strftime("year=%Y/month=%m/day=%d")
        path.mkdir(parents=True, exist_ok=True)
        return path

    def start_run(self, run_id: str) -> None:
        """Tag every following event with ``run_id``."""
        self.run_id = run_id

    def _append_line(self, path: Path, record: dict[str, Any], mode: str = "a") -> None:
        line = json.dumps(record, default=str)
        with self._write_lock:
            with open(path, mode, encoding="utf-8") as f:
                f.write(line + "\n")

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record one event.

        Args:
            level: INFO, WARNING or ERROR (case-insensitive)
            category: Subsystem the event came from
            event: snake_case event name, stable for querying
            message: Human-readable text, also sent to the console logger
            metadata: Extra fields stored under "metadata"
        """
        now = datetime.now(UTC)
        level = level.upper()
        record: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "level": level,
            "category": category,
            "event": event,
            "message": message,
        }
        if self.run_id:
            record["run_id"] = self.run_id
        if metadata:
            record["metadata"] = metadata

        levelno = logging.getLevelName(level)
        if not isinstance(levelno, int):
            levelno = logging.INFO
        event_logger.log(levelno, "[%s] %s", category, message)
        self._append_line(self.partition_dir(now) / EVENTS_FILE, record)

    info = partialmethod(log, "INFO")
    warning = partialmethod(log, "WARNING")
    error = partialmethod(log, "ERROR")

    def save_run_summary(
        self, run_id: str, summary: dict[str, Any], completed_at: datetime
    ) -> Path:
        """Write the final counters of a run to ``run-<run_id>.jsonl`` in its day partition."""
        out_path = self.partition_dir(completed_at) / f"run-{run_id}.jsonl"
        self._append_line(out_path, summary, mode="w")
        return out_path


_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Process-wide LogService, created lazily from settings."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
