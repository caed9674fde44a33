"""
Entry point for running the health daemon via `python -m healthwatch`.

Runs the supervision loop until SIGTERM or SIGINT, or serves the status API
with uvicorn when HEALTHWATCH_API=true. Either signal saves the health state
and exits with status 0. Failing to set up the data directory, event log or
service registry exits with status 1.
"""

import asyncio
import logging
import signal
import sys

import uvicorn

from .config import config
from .errors import ConfigError
from .events import configure_logging
from .main import app, build_monitor
from .monitor import INTERRUPT_MESSAGE, SHUTDOWN_MESSAGE, HealthMonitor
from .registry import load_registry

logger = logging.getLogger(__name__)

STOP_SIGNALS = {
    signal.SIGTERM: SHUTDOWN_MESSAGE,
    signal.SIGINT: INTERRUPT_MESSAGE,
}


async def run_daemon(monitor: HealthMonitor) -> int:
    """Run the monitor until a stop signal arrives. Returns the exit status."""
    loop = asyncio.get_running_loop()
    for sig, reason in STOP_SIGNALS.items():
        loop.add_signal_handler(sig, monitor.request_stop, reason)

    try:
        await monitor.run()
    finally:
        for sig in STOP_SIGNALS:
            loop.remove_signal_handler(sig)
        monitor.store.close()

    return 0


def main() -> int:
    """Run the health daemon."""
    try:
        config.ensure_dirs()
        configure_logging(config.event_log)
        registry = load_registry(config.services_file, launch_grace=config.launch_grace)
    except (OSError, ConfigError) as e:
        logging.basicConfig(level=logging.INFO, stream=sys.stderr)
        logger.critical(f"Fatal error: {e}")
        return 1

    monitor = build_monitor(registry, config)

    if config.api_enabled:
        app.state.monitor = monitor
        uvicorn.run(app, host=config.host, port=config.port, log_config=None)
        return 0

    try:
        return asyncio.run(run_daemon(monitor))
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
