"""
Liveness probes for managed services.

A probe answers one question, "is this service alive right now?". The
checker runs it under a timeout and treats any failure to answer as "not
alive", so a service that cannot be confirmed healthy gets restarted.
"""

import asyncio
import inspect
import logging
import os
import re
import signal
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

import httpx
import psutil

from .errors import ProbeError

if TYPE_CHECKING:
    from .registry import ServiceDescriptor

logger = logging.getLogger(__name__)


class Probe(ABC):
    """Abstract liveness check."""

    def __init__(self, timeout: Optional[float] = None):
        # Per-probe override of the checker's default timeout
        self.timeout = timeout

    @abstractmethod
    async def check(self) -> bool:
        """Return True if the service reports a positive liveness signal."""

    def describe(self) -> str:
        return type(self).__name__


class FunctionProbe(Probe):
    """Probe backed by a plain or async callable."""

    def __init__(self, func: Callable[[], Union[bool, Awaitable[bool]]], timeout: Optional[float] = None):
        super().__init__(timeout)
        self.func = func

    async def check(self) -> bool:
        result = self.func()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def describe(self) -> str:
        return f"function {getattr(self.func, '__name__', repr(self.func))}"


class ProcessProbe(Probe):
    """Alive if any other process's command line matches a regex (like pgrep -f)."""

    def __init__(self, pattern: str, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.pattern = pattern
        self._regex = re.compile(pattern)

    async def check(self) -> bool:
        return await asyncio.to_thread(self._scan)

    def _scan(self) -> bool:
        own_pid = os.getpid()
        for proc in psutil.process_iter(["pid", "name", "cmdline", "status"]):
            info = proc.info
            # A zombie has exited; it only lingers until its parent reaps it
            if info["pid"] == own_pid or info["status"] == psutil.STATUS_ZOMBIE:
                continue
            cmdline = " ".join(info["cmdline"] or []) or (info["name"] or "")
            if self._regex.search(cmdline):
                return True
        return False

    def describe(self) -> str:
        return f"process matching {self.pattern!r}"


class CommandProbe(Probe):
    """Alive if a shell command prints anything to stdout."""

    def __init__(self, command: str, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.command = command

    async def check(self) -> bool:
        process = await asyncio.create_subprocess_shell(
            self.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
        try:
            stdout, _ = await process.communicate()
        finally:
            # Timed out or cancelled: don't leave the probe command behind
            if process.returncode is None:
                try:
                    os.killpg(process.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass
                await process.wait()

        return len(stdout.strip()) > 0

    def describe(self) -> str:
        return f"command {self.command!r}"


class HttpProbe(Probe):
    """Alive if a GET request answers with a 2xx or 3xx status."""

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout)
        self.url = url
        self._transport = transport

    async def check(self) -> bool:
        async with httpx.AsyncClient(transport=self._transport, follow_redirects=True) as client:
            response = await client.get(self.url, timeout=self.timeout or 10.0)
        return response.status_code < 400

    def describe(self) -> str:
        return f"GET {self.url}"


class PidFileProbe(Probe):
    """Alive if the PID stored in a file belongs to a running, non-zombie process."""

    def __init__(self, path: Union[str, Path], timeout: Optional[float] = None):
        super().__init__(timeout)
        self.path = Path(path).expanduser()

    async def check(self) -> bool:
        return await asyncio.to_thread(self._check_pid)

    def _check_pid(self) -> bool:
        text = self.path.read_text().strip()
        try:
            pid = int(text)
        except ValueError:
            raise ProbeError(f"PID file {self.path} does not contain a PID: {text[:40]!r}")

        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def describe(self) -> str:
        return f"pid file {self.path}"


class LivenessChecker:
    """Runs a descriptor's probe with a bounded timeout."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def is_alive(self, descriptor: "ServiceDescriptor") -> bool:
        """Return True iff the probe confirms the service is alive.

        Timeouts and probe errors count as "not alive" and are never raised.
        """
        probe = descriptor.probe
        timeout = probe.timeout or self.timeout
        try:
            return bool(await asyncio.wait_for(probe.check(), timeout=timeout))
        except asyncio.TimeoutError:
            logger.warning(f"Probe for {descriptor.name} ({probe.describe()}) timed out after {timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Probe for {descriptor.name} ({probe.describe()}) failed: {e}")
            return False
