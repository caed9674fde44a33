"""
Supervision loop.

Sweeps the registry on a fixed cadence: probes every service in order,
restarts the ones that are down, persists the health state and logs every
step. One sweep runs immediately at startup. Sweeps never overlap: the
interval is measured from the start of a sweep, and a sweep that overruns
pushes the next one back instead of running alongside it.

A stop request cancels the pending sleep at once. A sweep in progress
finishes probing the service it is on, starts no further restarts and
skips the rest. The state is then saved as it stands and no final sweep
is run.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from .errors import StatePersistenceError
from .events import EventLog
from .probes import LivenessChecker
from .process import RestartInvoker
from .registry import ServiceDescriptor, build_registry
from .state import HealthState, ServiceStatus, StateStore

logger = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Health daemon shutting down..."
INTERRUPT_MESSAGE = "Health daemon interrupted..."


class Phase(Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class SweepResult:
    """Outcome of one pass over the registry."""

    number: int
    statuses: dict[str, Optional[ServiceStatus]] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def all_healthy(self) -> bool:
        return not self.interrupted and all(s == ServiceStatus.HEALTHY for s in self.statuses.values())


class HealthMonitor:
    """Periodically checks every registered service and restarts dead ones."""

    def __init__(
        self,
        registry: Iterable[ServiceDescriptor],
        store: StateStore,
        events: EventLog = None,
        interval: float = 300.0,
        checker: LivenessChecker = None,
        invoker: RestartInvoker = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.registry = build_registry(registry)
        self.store = store
        self.events = events or EventLog()
        self.interval = interval
        self.checker = checker or LivenessChecker()
        self.invoker = invoker or RestartInvoker()

        self.state = HealthState()
        self.phase = Phase.STARTING
        self.last_sweep: Optional[SweepResult] = None
        self._stop_event = asyncio.Event()
        self._stop_reason: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self, reason: str = SHUTDOWN_MESSAGE):
        """Ask the loop to stop. The first reason given is the one logged."""
        if self._stop_reason is None:
            self._stop_reason = reason
        self._stop_event.set()

    async def start(self):
        """Run the loop as a background task."""
        if self._task and not self._task.done():
            return

        self._task = asyncio.create_task(self.run())
        logger.info("Health monitor started")

    async def stop(self, reason: str = SHUTDOWN_MESSAGE):
        """Stop the background task and wait for it to finish."""
        self.request_stop(reason)
        if self._task:
            try:
                await self._task
            except Exception as e:
                logger.error(f"Health monitor exited with an error: {e}")
            self._task = None
        logger.info("Health monitor stopped")

    async def run(self):
        """Full lifecycle: load state, sweep until stopped, persist."""
        self.phase = Phase.STARTING
        self.state = self.store.load()
        self.state.started_at = datetime.now()

        self.events.record("=" * 50)
        self.events.record("HEALTH DAEMON STARTED")
        self.events.record(f"Monitoring {len(self.registry)} systems: {', '.join(d.name for d in self.registry)}")
        self.events.record(f"Check interval: {self.interval:g}s")
        self.events.record(
            f"Loaded state: {self.state.checks_performed} checks performed, "
            f"{sum(self.state.restart_counts.values())} restarts recorded"
        )
        self.events.record("=" * 50)

        self.phase = Phase.RUNNING
        try:
            while not self._stop_event.is_set():
                sweep_started = time.monotonic()
                self.last_sweep = await self.sweep(self.state)
                if self._stop_event.is_set():
                    break

                delay = self.interval - (time.monotonic() - sweep_started)
                if delay <= 0:
                    self.events.record(
                        f"Sweep took longer than the {self.interval:g}s interval, starting the next one now",
                        logging.WARNING,
                    )
                    continue

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.phase = Phase.STOPPING
            self._persist(self.state)
            self.events.record(self._stop_reason or "Health daemon stopped")
            self.phase = Phase.STOPPED

    async def sweep(self, state: HealthState) -> SweepResult:
        """Probe every service once, restarting the ones that are down."""
        state.checks_performed += 1
        state.last_check_at = datetime.now()
        result = SweepResult(number=state.checks_performed)

        self.events.record(f"--- Health Check #{state.checks_performed} ---")

        for descriptor in self.registry:
            if self._stop_event.is_set():
                result.interrupted = True
                self.events.record("Stop requested, skipping remaining services", logging.WARNING)
                break

            try:
                result.statuses[descriptor.name] = await self._check_service(descriptor, state)
            except Exception as e:
                result.statuses[descriptor.name] = None
                logger.exception(f"Unexpected error while checking {descriptor.name}")
                self.events.record(f"✗ {descriptor.name}: error during check: {e}", logging.ERROR)

        self._persist(state)

        self.events.record(f"Uptime: {state.uptime_minutes()} min | All healthy: {result.all_healthy}")
        return result

    async def _check_service(self, descriptor: ServiceDescriptor, state: HealthState) -> ServiceStatus:
        name = descriptor.name

        if await self.checker.is_alive(descriptor):
            state.status_by_service[name] = ServiceStatus.HEALTHY
            self.events.record(f"✓ {name}: healthy")
            return ServiceStatus.HEALTHY

        state.status_by_service[name] = ServiceStatus.DOWN
        label = " [critical]" if descriptor.critical else ""
        if self._stop_event.is_set():
            self.events.record(f"✗ {name}{label}: DOWN - stop requested, not restarting", logging.WARNING)
            return ServiceStatus.DOWN

        self.events.record(f"✗ {name}{label}: DOWN - attempting restart...", logging.WARNING)

        launched = await self.invoker.restart(descriptor)

        # Every attempt counts, whether or not the launch worked
        count = state.restart_counts.get(name, 0) + 1
        state.restart_counts[name] = count
        self._record_attempt(name, launched, count)

        if launched:
            status = ServiceStatus.RESTARTED
            self.events.record(f"  → Restarted {name} (total restarts: {count})")
        else:
            status = ServiceStatus.RESTART_FAILED
            self.events.record(f"  → FAILED to restart {name} (total restarts: {count})", logging.ERROR)

        state.status_by_service[name] = status
        return status

    def _persist(self, state: HealthState):
        try:
            self.store.save(state)
        except StatePersistenceError as e:
            self.events.record(f"Could not save health state: {e}", logging.ERROR)

    def _record_attempt(self, name: str, launched: bool, count: int):
        try:
            self.store.record_attempt(name, launched, count)
        except StatePersistenceError as e:
            self.events.record(f"Could not record restart of {name}: {e}", logging.ERROR)
