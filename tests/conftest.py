"""Shared test fixtures for healthwatch tests."""

import logging
from pathlib import Path
from typing import Callable, Union

import pytest

from healthwatch.events import EventLog
from healthwatch.monitor import HealthMonitor
from healthwatch.probes import FunctionProbe, LivenessChecker
from healthwatch.process import FunctionStartAction, RestartInvoker
from healthwatch.registry import ServiceDescriptor
from healthwatch.state import StateStore


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "health-state.db"


@pytest.fixture
def store(state_path: Path):
    store = StateStore(state_path)
    yield store
    store.close()


@pytest.fixture
def make_service() -> Callable[..., ServiceDescriptor]:
    """Build a descriptor from fake probe and start callables.

    ``alive`` and ``launched`` may be booleans or callables (sync or async).
    """

    def factory(
        name: str,
        alive: Union[bool, Callable] = True,
        launched: Union[bool, Callable] = True,
        critical: bool = False,
    ) -> ServiceDescriptor:
        probe = alive if callable(alive) else (lambda: alive)
        start = launched if callable(launched) else (lambda: launched)
        return ServiceDescriptor(
            name=name,
            probe=FunctionProbe(probe),
            start=FunctionStartAction(start),
            critical=critical,
        )

    return factory


@pytest.fixture
def make_monitor(store: StateStore) -> Callable[..., HealthMonitor]:
    def factory(services, interval: float = 300.0, **kwargs) -> HealthMonitor:
        kwargs.setdefault("checker", LivenessChecker(timeout=1.0))
        kwargs.setdefault("invoker", RestartInvoker(timeout=1.0))
        return HealthMonitor(services, store, events=EventLog(), interval=interval, **kwargs)

    return factory


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by configure_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
