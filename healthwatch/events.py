"""
Event log for the health daemon.

Every observation and action is written as one line, prefixed with an
ISO-8601 timestamp, to the event log file and to stdout. Write failures are
reported by the logging handlers and never interrupt supervision.
"""

import logging
import sys
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

EVENT_LOGGER_NAME = "healthwatch.events"


class IsoFormatter(logging.Formatter):
    """Formatter that renders asctime as an ISO-8601 UTC timestamp."""

    def formatTime(self, record, datefmt=None):
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


log_formatter = IsoFormatter("[%(asctime)s] %(levelname)s - %(message)s")


def configure_logging(log_path: Path, level: int = logging.INFO) -> list[logging.Handler]:
    """Send all daemon logging to the event log file and stdout.

    Raises OSError if the log file cannot be opened.
    """
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)

    logging.basicConfig(
        level=level,
        handlers=[file_handler, console_handler],
        force=True,
    )
    return [file_handler, console_handler]


@dataclass(frozen=True)
class EventLogEntry:
    timestamp: datetime
    message: str
    level: str = "INFO"

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "level": self.level,
        }


class EventLog:
    """Append-only record of supervisor events.

    Lines go through the ``healthwatch.events`` logger, so they land wherever
    logging was configured. The most recent entries are also kept in memory
    for the status API.
    """

    def __init__(self, max_recent: int = 500, logger: logging.Logger = None):
        self._logger = logger or logging.getLogger(EVENT_LOGGER_NAME)
        self._recent: deque[EventLogEntry] = deque(maxlen=max_recent)

    def record(self, message: str, level: int = logging.INFO):
        """Append an event line."""
        entry = EventLogEntry(
            timestamp=datetime.now(timezone.utc),
            message=message,
            level=logging.getLevelName(level),
        )
        self._recent.append(entry)
        self._logger.log(level, message)

    def recent(self, limit: int = 100) -> list[EventLogEntry]:
        """Most recent entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._recent)[-limit:]
