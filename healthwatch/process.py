"""
Start actions for services that were found down.

Services are launched detached: each one gets its own session, stdin from
/dev/null and its output appended to its own log file. The command runs in
the background of a short-lived launcher shell, which is the only process
the daemon waits on; once the launcher exits the service is adopted by init.
The daemon keeps no handle on what it starts and never stops or reaps it;
the next sweep's probe is the only confirmation that a launch worked.
"""

import asyncio
import inspect
import logging
import math
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from .errors import LaunchError

if TYPE_CHECKING:
    from .registry import ServiceDescriptor

logger = logging.getLogger(__name__)

# Seconds between the launcher's checks on the command it started
LAUNCH_POLL = 0.05

# Runs $1 in the background and polls it up to $2 times. Exits with the
# command's status if it has finished by then, 0 otherwise; a command still
# running is left behind and reparented once this shell exits.
LAUNCHER = f"""\
/bin/bash -c "$1" &
pid=$!
for ((tick = 0; tick < $2; tick++)); do
    if ! kill -0 "$pid" 2>/dev/null; then
        wait "$pid"
        exit $?
    fi
    sleep {LAUNCH_POLL}
done
exit 0
"""


class StartAction(ABC):
    """Abstract operation that tries to bring a service up."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    @abstractmethod
    async def launch(self) -> bool:
        """Launch the service. Return True if the launch itself succeeded."""

    def describe(self) -> str:
        return type(self).__name__


class FunctionStartAction(StartAction):
    """Start action backed by a plain or async callable."""

    def __init__(self, func: Callable[[], Union[bool, Awaitable[bool]]], timeout: Optional[float] = None):
        super().__init__(timeout)
        self.func = func

    async def launch(self) -> bool:
        result = self.func()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


class CommandStartAction(StartAction):
    """Launch a shell command in a new session.

    If the command exits within ``grace`` seconds its exit status decides the
    outcome (so ``nohup ... &`` style commands work). If it is still running
    after that, it is a foreground service and the launch counts as done.
    """

    def __init__(
        self,
        command: str,
        working_dir: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        log_file: Optional[str] = None,
        grace: float = 2.0,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        self.command = command
        self.working_dir = Path(working_dir).expanduser() if working_dir else None
        self.env = env or {}
        self.log_file = log_file
        self.grace = grace

    def _log_path(self) -> Optional[Path]:
        if not self.log_file:
            return None
        path = Path(self.log_file).expanduser()
        if not path.is_absolute() and self.working_dir:
            path = self.working_dir / path
        return path

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        for key, value in self.env.items():
            env[key] = os.path.expandvars(value)
        return env

    async def launch(self) -> bool:
        return await asyncio.to_thread(self._spawn)

    def _spawn(self) -> bool:
        log_path = self._log_path()
        if log_path:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            output = open(log_path, "ab")
        else:
            output = subprocess.DEVNULL

        polls = max(1, math.ceil(self.grace / LAUNCH_POLL))
        try:
            launcher = subprocess.Popen(
                ["/bin/bash", "-c", LAUNCHER, "healthwatch-launch", self.command, str(polls)],
                cwd=self.working_dir,
                env=self._environment(),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,  # Outlive the daemon
            )
        finally:
            if output is not subprocess.DEVNULL:
                output.close()

        # The launcher gives up on the command after the grace period, so this
        # wait is bounded. Only the launcher is our child; the service is not.
        exit_code = launcher.wait()
        logger.debug(f"Launcher for {self.command!r} exited with status {exit_code}")

        if exit_code != 0:
            raise LaunchError(f"{self.command!r} exited with status {exit_code}")
        return True

    def describe(self) -> str:
        return f"command {self.command!r}"


class RestartInvoker:
    """Runs a descriptor's start action once, bounded by a timeout."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def restart(self, descriptor: "ServiceDescriptor") -> bool:
        """Return True if the launch completed without error.

        This does not mean the service is alive. Errors and timeouts are
        logged and reported as False.
        """
        action = descriptor.start
        timeout = action.timeout or self.timeout
        try:
            return bool(await asyncio.wait_for(action.launch(), timeout=timeout))
        except asyncio.TimeoutError:
            logger.error(f"Start action for {descriptor.name} ({action.describe()}) timed out after {timeout}s")
            return False
        except Exception as e:
            logger.error(f"Failed to start service {descriptor.name}: {e}")
            return False
