"""
Process liveness and termination capability.

The instance manager never branches on the platform itself. It talks to a
ProcessProbe:

- is_alive(pid): does the process exist
- terminate_gracefully(pid): polite shutdown request (SIGTERM on POSIX)
- terminate_forcefully(pid): immediate kill (SIGKILL / TerminateProcess)
- wait_for_exit(pid, timeout): block until the process is gone or timeout expires

PsutilProcessProbe covers POSIX and Windows. On Windows there is no graceful
signal, so supports_graceful is False and callers kill immediately.
"""

import _thread
import logging
import sys
from abc import ABC, abstractmethod

import psutil

from tasktracker.instances.errors import TerminationError

logger = logging.getLogger(__name__)


class ProcessProbe(ABC):
    """Platform process control."""

    supports_graceful: bool = True

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Return True if a process with pid exists."""

    @abstractmethod
    def terminate_gracefully(self, pid: int) -> None:
        """Request shutdown.

        Raises:
            TerminationError: If the signal could not be delivered
        """

    @abstractmethod
    def terminate_forcefully(self, pid: int) -> None:
        """Kill immediately.

        Raises:
            TerminationError: If the process could not be killed
        """

    @abstractmethod
    def wait_for_exit(self, pid: int, timeout: float) -> bool:
        """Wait up to timeout seconds for pid to exit.

        Returns:
            True if the process is gone
        """


class PsutilProcessProbe(ProcessProbe):
    """psutil-backed probe for POSIX and Windows."""

    def __init__(self, platform: str | None = None) -> None:
        self.platform = platform or sys.platform
        self.supports_graceful = self.platform != "win32"

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            if not psutil.pid_exists(pid):
                return False
            # Zombies still have a PID but are not running anything
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists but owned by someone else
            return True

    def _signal(self, pid: int, force: bool) -> None:
        action = "kill" if force else "terminate"
        try:
            proc = psutil.Process(pid)
            if force:
                proc.kill()
            else:
                proc.terminate()
            logger.debug(f"Sent {action} to PID {pid}")
        except psutil.NoSuchProcess:
            logger.debug(f"PID {pid} already exited before {action}")
        except KeyboardInterrupt:
            _thread.interrupt_main()
            raise
        except psutil.AccessDenied as e:
            raise TerminationError(pid, "access denied") from e
        except Exception as e:
            raise TerminationError(pid, str(e)) from e

    def terminate_gracefully(self, pid: int) -> None:
        self._signal(pid, force=False)

    def terminate_forcefully(self, pid: int) -> None:
        self._signal(pid, force=True)

    def wait_for_exit(self, pid: int, timeout: float) -> bool:
        try:
            proc = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return True
        _gone, alive = psutil.wait_procs([proc], timeout=timeout)
        return not alive
