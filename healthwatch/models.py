"""
Database models for the health daemon.

Uses Peewee ORM with SQLite. Stores the supervisor's counters, the last
observed status and cumulative restart count of each service, and the
history of restart attempts.
"""

import os
from datetime import datetime
from pathlib import Path

from peewee import (
    AutoField,
    BooleanField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    IntegerField,
    Model,
    SqliteDatabase,
)

database = DatabaseProxy()

# The health_state table only ever holds this row.
STATE_ROW_ID = 1


def initialize_db(path: Path) -> SqliteDatabase:
    """Initialize database connection and create tables.

    Binds the module-wide proxy, so only one database is active per process.
    """
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    db = SqliteDatabase(
        str(path),
        pragmas={
            "journal_mode": "wal",
            "synchronous": "normal",
            "busy_timeout": 5000,
        },
    )
    database.initialize(db)
    try:
        database.create_tables([HealthRecord, ServiceHealth, RestartAttempt], safe=True)
    except Exception:
        db.close()
        raise
    return db


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class HealthRecord(BaseModel):
    """Supervisor-wide counters."""

    id = IntegerField(primary_key=True, default=STATE_ROW_ID)
    started_at = DateTimeField()
    checks_performed = IntegerField(default=0)
    last_check_at = DateTimeField(null=True)

    class Meta:
        table_name = "health_state"


class ServiceHealth(BaseModel):
    """Last observed status and cumulative restart count of one service."""

    name = CharField(primary_key=True)
    status = CharField(null=True)  # healthy, down, restarted, restart_failed
    restart_count = IntegerField(default=0)

    class Meta:
        table_name = "service_health"


class RestartAttempt(BaseModel):
    """Record of one attempt to start a service that was found down."""

    id = AutoField()
    service_name = CharField(index=True)
    launched = BooleanField(default=False)
    restart_count = IntegerField()
    timestamp = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = "restart_attempts"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_name": self.service_name,
            "launched": self.launched,
            "restart_count": self.restart_count,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
