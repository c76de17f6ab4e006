"""
Process Instance Management

Operator-side inspection and control of the running Local Task Tracker server:

- get_current_instance(): read the lock file and probe whether its PID lives
- kill_all_instances(): graceful termination, forceful after the grace period
- cleanup_stale_files(): remove the lock file and port-config artifact
- show_status(): human-readable report
- focus_instance(): ask the running instance to come to the foreground

Each call is a single synchronous CLI invocation. Nothing here locks the lock
file; concurrent invocations against the same file are not coordinated.
"""

import logging
from typing import Callable

from rich.console import Console

from tasktracker.instances.errors import FocusRequestError, TerminationError
from tasktracker.instances.focus_channel import send_focus_request
from tasktracker.instances.lock_file import read_lock_record, remove_file
from tasktracker.instances.messages import FocusRequest, InstanceInfo, now_ms
from tasktracker.instances.paths import InstanceConfig
from tasktracker.instances.process_probe import ProcessProbe, PsutilProcessProbe

logger = logging.getLogger(__name__)


class ProcessInstanceManager:
    """Inspect, terminate and clean up the recorded server instance.

    Args:
        config: Paths, port and grace period
        probe: Process control capability (defaults to PsutilProcessProbe)
        console: Output console for operator-facing text
        clock: Epoch-millisecond clock
    """

    def __init__(
        self,
        config: InstanceConfig,
        probe: ProcessProbe | None = None,
        console: Console | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.probe = probe or PsutilProcessProbe()
        self.console = console or Console(highlight=False)
        self.clock = clock

    def get_current_instance(self) -> InstanceInfo | None:
        """Get information about the recorded instance.

        Returns:
            InstanceInfo, or None if there is no (parsable) lock file
        """
        record = read_lock_record(self.config.lock_file)
        if record is None:
            return None
        is_running = self.probe.is_alive(record.pid)
        info = InstanceInfo(record=record, is_running=is_running, lock_age_ms=self.clock() - record.timestamp)
        logger.debug(f"Lock file names PID {record.pid}: running={is_running}, age={info.lock_age_ms}ms")
        return info

    def kill_all_instances(self) -> bool:
        """Terminate the running instance.

        Returns:
            True if a running process was terminated, False otherwise
        """
        instance = self.get_current_instance()

        if instance is None:
            self.console.print("❌ No running instances found")
            return False

        if not instance.is_running:
            self.console.print("❌ No active instances found (stale lock file detected)")
            self.cleanup_stale_files()
            return False

        pid = instance.pid
        try:
            self.console.print(f"🔄 Terminating instance (PID: {pid})...")
            if self.probe.supports_graceful:
                self.probe.terminate_gracefully(pid)
                if not self.probe.wait_for_exit(pid, self.config.grace_period_s):
                    logger.warning(f"PID {pid} did not exit within {self.config.grace_period_s}s grace period, escalating")
                    if self.probe.is_alive(pid):
                        self.probe.terminate_forcefully(pid)
            else:
                # No graceful signal on this platform
                self.probe.terminate_forcefully(pid)
        except TerminationError as e:
            logger.error(f"Termination failed: {e}")
            self.console.print(f"❌ Failed to terminate instance: {e.reason}")
            return False

        self.console.print("✅ Instance terminated successfully")
        self.cleanup_stale_files()
        return True

    def cleanup_stale_files(self) -> bool:
        """Remove the lock file and port configuration if present. Idempotent.

        Returns:
            True unless a present file could not be removed
        """
        ok = True
        for path, label in ((self.config.lock_file, "lock file"), (self.config.port_config_file, "port config")):
            try:
                if remove_file(path):
                    self.console.print(f"🧹 Cleaned up {label}")
            except OSError as e:
                logger.error(f"Failed to remove {path}: {e}")
                self.console.print(f"⚠️ Failed to cleanup {label}: {e}")
                ok = False
        return ok

    def show_status(self) -> None:
        """Print the status of the recorded instance."""
        instance = self.get_current_instance()
        name = self.config.app_name

        self.console.print(f"🔍 {name} Instance Status")
        self.console.print("=" * (len(name) + 18))

        if instance is None:
            self.console.print("✅ No instances currently running")
            self.console.print("💡 You can safely start a new instance")
            return

        record = instance.record
        self.console.print("📍 Instance found:")
        self.console.print(f"   PID: {record.pid}")
        self.console.print(f"   Started: {record.start_time}")
        self.console.print(f"   Version: {record.version}")
        self.console.print(f"   Uptime: {instance.uptime_ms // 1000}s")
        self.console.print(f"   Status: {'🟢 Running' if instance.is_running else '🔴 Not running (stale)'}")

        if not instance.is_running:
            self.console.print('⚠️  Stale lock file detected - run "cleanup" to remove it')

    def focus_instance(self) -> bool:
        """Send a focus request to the running instance.

        Returns:
            True if the request was delivered to the coordination port
        """
        instance = self.get_current_instance()

        if instance is None or not instance.is_running:
            self.console.print("❌ No running instance to focus")
            return False

        try:
            send_focus_request(self.config.host, self.config.lock_port, FocusRequest(action="focus", timestamp=self.clock()))
        except FocusRequestError as e:
            logger.warning(str(e))
            self.console.print("❌ Failed to communicate with existing instance")
            return False

        self.console.print("✅ Sent focus command to existing instance")
        return True
