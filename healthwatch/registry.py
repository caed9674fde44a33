"""
Registry of managed services.

The registry is fixed for the lifetime of the daemon. It is normally read
from a JSON file, either a list of services or ``{"services": [...]}``::

    [
      {
        "name": "scanner-daemon",
        "critical": true,
        "probe": {"type": "process", "pattern": "scanner-daemon.js"},
        "start": {
          "command": "nohup node scanner-daemon.js &",
          "working_dir": "~/pump-scout",
          "log_file": "scanner-daemon.log"
        }
      }
    ]

A plain string for ``probe`` is a shell command probe, and a plain string
for ``start`` is a start command.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .probes import CommandProbe, HttpProbe, PidFileProbe, Probe, ProcessProbe
from .process import CommandStartAction, StartAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceDescriptor:
    """Static definition of a managed service."""

    name: str
    probe: Probe
    start: StartAction
    critical: bool = False  # Advisory only


def build_registry(descriptors: Iterable[ServiceDescriptor]) -> tuple[ServiceDescriptor, ...]:
    """Freeze descriptors into a registry, rejecting duplicate names."""
    registry = tuple(descriptors)
    seen = set()
    for descriptor in registry:
        if descriptor.name in seen:
            raise ConfigError(f"Duplicate service name: {descriptor.name}")
        seen.add(descriptor.name)
    return registry


# Registry file schema
class ProcessProbeConfig(BaseModel):
    type: Literal["process"]
    pattern: str = Field(..., description="Regex matched against process command lines")
    timeout: Optional[float] = None


class CommandProbeConfig(BaseModel):
    type: Literal["command"]
    command: str = Field(..., description="Shell command; alive if it prints anything")
    timeout: Optional[float] = None


class HttpProbeConfig(BaseModel):
    type: Literal["http"]
    url: str = Field(..., description="URL that answers 2xx/3xx when the service is up")
    timeout: Optional[float] = None


class PidFileProbeConfig(BaseModel):
    type: Literal["pid_file"]
    path: str = Field(..., description="File holding the service's PID")
    timeout: Optional[float] = None


ProbeConfig = Annotated[
    Union[ProcessProbeConfig, CommandProbeConfig, HttpProbeConfig, PidFileProbeConfig],
    Field(discriminator="type"),
]


class StartConfig(BaseModel):
    command: str = Field(..., description="Shell command that launches the service")
    working_dir: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)
    log_file: Optional[str] = Field(None, description="Where the service's output is appended")
    timeout: Optional[float] = None


class ServiceConfig(BaseModel):
    name: str = Field(..., min_length=1)
    probe: ProbeConfig
    start: StartConfig
    critical: bool = False

    @field_validator("probe", mode="before")
    @classmethod
    def _probe_shorthand(cls, value):
        if isinstance(value, str):
            return {"type": "command", "command": value}
        return value

    @field_validator("start", mode="before")
    @classmethod
    def _start_shorthand(cls, value):
        if isinstance(value, str):
            return {"command": value}
        return value


def _make_probe(probe: ProbeConfig) -> Probe:
    if isinstance(probe, ProcessProbeConfig):
        return ProcessProbe(probe.pattern, timeout=probe.timeout)
    if isinstance(probe, CommandProbeConfig):
        return CommandProbe(probe.command, timeout=probe.timeout)
    if isinstance(probe, HttpProbeConfig):
        return HttpProbe(probe.url, timeout=probe.timeout)
    return PidFileProbe(probe.path, timeout=probe.timeout)


def descriptor_from_config(service: ServiceConfig, launch_grace: float = 2.0) -> ServiceDescriptor:
    """Build a descriptor from a validated registry entry."""
    timeout = service.start.timeout
    if timeout is not None and timeout <= launch_grace:
        # The launch itself takes up to the grace period
        raise ConfigError(
            f"Start timeout for {service.name} ({timeout:g}s) must be longer than the launch grace period ({launch_grace:g}s)"
        )

    start = CommandStartAction(
        service.start.command,
        working_dir=service.start.working_dir,
        env=service.start.env,
        log_file=service.start.log_file,
        grace=launch_grace,
        timeout=service.start.timeout,
    )
    return ServiceDescriptor(
        name=service.name,
        probe=_make_probe(service.probe),
        start=start,
        critical=service.critical,
    )


def load_registry(path: Path, launch_grace: float = 2.0) -> tuple[ServiceDescriptor, ...]:
    """Read and validate the registry file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigError(f"Service registry not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read service registry {path}: {e}")

    if isinstance(data, dict):
        data = data.get("services")
    if not isinstance(data, list):
        raise ConfigError(f"Service registry {path} must contain a list of services")

    descriptors = []
    for index, entry in enumerate(data):
        try:
            service = ServiceConfig.model_validate(entry)
        except ValidationError as e:
            raise ConfigError(f"Invalid service #{index} in {path}: {e}")
        descriptors.append(descriptor_from_config(service, launch_grace=launch_grace))

    registry = build_registry(descriptors)
    logger.info(f"Loaded {len(registry)} services from {path}")
    return registry
