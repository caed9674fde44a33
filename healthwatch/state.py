"""
Durable health state.

The state is a plain value owned by the supervision loop: loaded once at
startup, mutated by each sweep and written back at the end of every sweep
and on shutdown. Writes happen inside a single SQLite transaction, so an
interrupted save leaves the previous record intact.

Only one daemon may use a given state file at a time. Nothing enforces
this; running two daemons against the same file is unsupported. Within a
process, the models share one database binding, so only one open
StateStore is supported at a time: opening a second one rebinds the models
to its file.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from peewee import PeeweeException

from .errors import StatePersistenceError
from .models import STATE_ROW_ID, HealthRecord, RestartAttempt, ServiceHealth, database, initialize_db

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    HEALTHY = "healthy"
    DOWN = "down"
    RESTARTED = "restarted"
    RESTART_FAILED = "restart_failed"


@dataclass
class HealthState:
    """Counters and per-service status carried across daemon restarts."""

    started_at: datetime = field(default_factory=datetime.now)
    checks_performed: int = 0
    last_check_at: Optional[datetime] = None
    restart_counts: dict[str, int] = field(default_factory=dict)
    status_by_service: dict[str, ServiceStatus] = field(default_factory=dict)

    def uptime_minutes(self, now: datetime = None) -> int:
        now = now or datetime.now()
        return round((now - self.started_at).total_seconds() / 60)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "checks_performed": self.checks_performed,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "restart_counts": dict(self.restart_counts),
            "status_by_service": {name: status.value for name, status in self.status_by_service.items()},
        }


class StateStore:
    """Loads and saves HealthState in a SQLite file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._db = None

    def _open(self):
        if self._db is None:
            self._db = initialize_db(self.path)

    def close(self):
        """Close the underlying database connection."""
        if self._db is not None:
            try:
                self._db.close()
            except PeeweeException as e:
                logger.warning(f"Error closing state database: {e}")
            self._db = None

    def load(self) -> HealthState:
        """Load the persisted state merged over defaults.

        A missing file yields the defaults. An unreadable file is moved aside
        and replaced by a fresh one, which also yields the defaults.
        """
        state = HealthState()
        try:
            self._open()
            record = HealthRecord.get_or_none(HealthRecord.id == STATE_ROW_ID)
            rows = list(ServiceHealth.select().order_by(ServiceHealth.name))
        except (PeeweeException, OSError) as e:
            logger.warning(f"State file {self.path} is unreadable ({e}), starting from defaults")
            self._quarantine()
            return state

        if record:
            state.started_at = record.started_at
            state.checks_performed = record.checks_performed or 0
            state.last_check_at = record.last_check_at

        for row in rows:
            state.restart_counts[row.name] = row.restart_count or 0
            if not row.status:
                continue
            try:
                state.status_by_service[row.name] = ServiceStatus(row.status)
            except ValueError:
                logger.warning(f"Ignoring unknown status {row.status!r} stored for {row.name}")

        return state

    def save(self, state: HealthState):
        """Overwrite the persisted state in one transaction."""
        names = sorted(set(state.restart_counts) | set(state.status_by_service))
        rows = [
            {
                "name": name,
                "status": state.status_by_service[name].value if name in state.status_by_service else None,
                "restart_count": state.restart_counts.get(name, 0),
            }
            for name in names
        ]

        try:
            self._open()
            with database.atomic():
                HealthRecord.replace(
                    id=STATE_ROW_ID,
                    started_at=state.started_at,
                    checks_performed=state.checks_performed,
                    last_check_at=state.last_check_at,
                ).execute()
                if rows:
                    ServiceHealth.replace_many(rows).execute()
        except (PeeweeException, OSError) as e:
            raise StatePersistenceError(f"Failed to save state to {self.path}: {e}") from e

    def record_attempt(self, service_name: str, launched: bool, restart_count: int) -> RestartAttempt:
        """Append a restart attempt to the history."""
        try:
            self._open()
            return RestartAttempt.create(
                service_name=service_name,
                launched=launched,
                restart_count=restart_count,
            )
        except (PeeweeException, OSError) as e:
            raise StatePersistenceError(f"Failed to record restart of {service_name}: {e}") from e

    def recent_attempts(self, service_name: str, limit: int = 20) -> list[RestartAttempt]:
        """Most recent restart attempts for a service, newest first."""
        self._open()
        query = (
            RestartAttempt.select()
            .where(RestartAttempt.service_name == service_name)
            .order_by(RestartAttempt.timestamp.desc(), RestartAttempt.id.desc())
            .limit(limit)
        )
        return list(query)

    def _quarantine(self):
        """Move an unreadable state file aside and start a fresh one."""
        self.close()

        if self.path.exists():
            target = self.path.with_name(f"{self.path.name}.corrupt-{datetime.now():%Y%m%d_%H%M%S}")
            try:
                os.replace(self.path, target)
                logger.warning(f"Moved unreadable state file to {target}")
            except OSError as e:
                logger.error(f"Could not move unreadable state file {self.path}: {e}")

        for suffix in ("-wal", "-shm"):
            sidecar = Path(f"{self.path}{suffix}")
            try:
                sidecar.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove {sidecar}: {e}")

        try:
            self._open()
        except (PeeweeException, OSError) as e:
            self._db = None
            logger.error(f"Could not create a fresh state file at {self.path}: {e}")
