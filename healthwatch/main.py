"""
Health daemon status API.

Optional read-only FastAPI application exposing the daemon's health state,
per-service status, restart history and recent events. The supervision loop
runs as a background task for the lifetime of the application. Set
``app.state.monitor`` before serving.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from . import __version__
from .config import config
from .events import EventLog
from .monitor import HealthMonitor
from .probes import LivenessChecker
from .process import RestartInvoker
from .registry import ServiceDescriptor
from .state import ServiceStatus, StateStore

logger = logging.getLogger(__name__)


def build_monitor(registry: tuple[ServiceDescriptor, ...], cfg=config) -> HealthMonitor:
    """Wire a HealthMonitor from configuration."""
    return HealthMonitor(
        registry,
        StateStore(cfg.state_path),
        events=EventLog(max_recent=cfg.recent_events),
        interval=cfg.check_interval,
        checker=LivenessChecker(timeout=cfg.probe_timeout),
        invoker=RestartInvoker(timeout=cfg.start_timeout),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the supervision loop alongside the API."""
    monitor: HealthMonitor = app.state.monitor
    logger.info("Starting health daemon API...")
    await monitor.start()

    yield

    logger.info("Shutting down health daemon API...")
    await monitor.stop()
    monitor.store.close()


app = FastAPI(
    title="Healthwatch",
    description="Process health supervisor status",
    version=__version__,
    lifespan=lifespan,
)


# Pydantic models for API
class ServiceResponse(BaseModel):
    name: str
    critical: bool
    probe: str
    start: str
    status: Optional[str]
    restart_count: int


class RestartAttemptResponse(BaseModel):
    id: int
    service_name: str
    launched: bool
    restart_count: int
    timestamp: Optional[str]


class ServiceDetailResponse(ServiceResponse):
    recent_restarts: list[RestartAttemptResponse] = []


def _monitor(request: Request) -> HealthMonitor:
    return request.app.state.monitor


def _service_response(monitor: HealthMonitor, descriptor: ServiceDescriptor) -> dict:
    status = monitor.state.status_by_service.get(descriptor.name)
    return {
        "name": descriptor.name,
        "critical": descriptor.critical,
        "probe": descriptor.probe.describe(),
        "start": descriptor.start.describe(),
        "status": status.value if status else None,
        "restart_count": monitor.state.restart_counts.get(descriptor.name, 0),
    }


# Status overview
@app.get("/api/status")
async def get_status(request: Request):
    """Get overview of the daemon and its services."""
    monitor = _monitor(request)
    state = monitor.state
    statuses = [state.status_by_service.get(d.name) for d in monitor.registry]
    return {
        "phase": monitor.phase.value,
        "interval_seconds": monitor.interval,
        "started_at": state.started_at.isoformat(),
        "uptime_minutes": state.uptime_minutes(),
        "checks_performed": state.checks_performed,
        "last_check_at": state.last_check_at.isoformat() if state.last_check_at else None,
        "total": len(monitor.registry),
        "healthy": sum(1 for s in statuses if s == ServiceStatus.HEALTHY),
        "all_healthy": monitor.last_sweep.all_healthy if monitor.last_sweep else None,
        "total_restarts": sum(state.restart_counts.get(d.name, 0) for d in monitor.registry),
    }


@app.get("/api/services", response_model=list[ServiceResponse])
async def list_services(request: Request):
    """List all registered services with their last observed status."""
    monitor = _monitor(request)
    return [_service_response(monitor, d) for d in monitor.registry]


@app.get("/api/services/{name}", response_model=ServiceDetailResponse)
async def get_service(request: Request, name: str, limit: int = Query(20, ge=1, le=500)):
    """Get a service with its recent restart attempts."""
    monitor = _monitor(request)
    descriptor = next((d for d in monitor.registry if d.name == name), None)
    if not descriptor:
        raise HTTPException(status_code=404, detail=f"Service '{name}' not found")

    data = _service_response(monitor, descriptor)
    data["recent_restarts"] = [a.to_dict() for a in monitor.store.recent_attempts(name, limit=limit)]
    return data


# Events
@app.get("/api/events")
async def get_events(request: Request, limit: int = Query(100, ge=1, le=1000)):
    """Get recent event log entries, oldest first."""
    entries = _monitor(request).events.recent(limit)
    return {"events": [e.to_dict() for e in entries], "total": len(entries)}
