"""
Configuration for the health daemon.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.healthwatch/ unless overridden.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _path_from_env(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    return Path(value).expanduser() if value else default


@dataclass
class Config:
    """Health daemon configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("HEALTHWATCH_DATA_DIR", str(Path.home() / ".healthwatch"))).expanduser()
    state_path: Path = None
    event_log: Path = None
    services_file: Path = None

    # Supervision
    check_interval: float = float(os.environ.get("CHECK_INTERVAL", "300"))  # 5 minutes
    probe_timeout: float = float(os.environ.get("PROBE_TIMEOUT", "10"))
    start_timeout: float = float(os.environ.get("START_TIMEOUT", "30"))
    launch_grace: float = float(os.environ.get("LAUNCH_GRACE", "2"))

    # Logging
    recent_events: int = int(os.environ.get("RECENT_EVENTS", "500"))

    # Status API
    api_enabled: bool = os.environ.get("HEALTHWATCH_API", "false").lower() == "true"
    host: str = os.environ.get("HEALTHWATCH_HOST", "127.0.0.1")
    port: int = int(os.environ.get("HEALTHWATCH_PORT", "9901"))

    def __post_init__(self):
        """Initialize derived paths."""
        self.data_dir = Path(self.data_dir)
        if self.state_path is None:
            self.state_path = _path_from_env("HEALTHWATCH_STATE_FILE", self.data_dir / "health-state.db")
        if self.event_log is None:
            self.event_log = _path_from_env("HEALTHWATCH_EVENT_LOG", self.data_dir / "health.log")
        if self.services_file is None:
            self.services_file = _path_from_env("HEALTHWATCH_SERVICES_FILE", self.data_dir / "services.json")

    def ensure_dirs(self):
        """Create the directories holding state and logs."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.event_log.parent.mkdir(parents=True, exist_ok=True)


config = Config()
