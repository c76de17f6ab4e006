"""
Server-side single instance lock.

Run by the backend at launch. It combines two signals:

1. Binding the fixed coordination port (fails if another server holds it)
2. The lock file (fails if it names a live PID younger than MAX_SERVER_LOCK_AGE_MS)

A lock file naming a dead PID, an over-age lock, or a corrupt file is removed
as stale. Once acquired, the bound port doubles as the focus request listener.
"""

import _thread
import errno
import logging
import socket
from typing import Any, Callable

from tasktracker.instances.errors import FocusRequestError
from tasktracker.instances.focus_channel import FocusRequestListener, send_focus_request
from tasktracker.instances.lock_file import read_lock_record, remove_file, write_lock_record
from tasktracker.instances.messages import FocusRequest, LockRecord, now_ms
from tasktracker.instances.paths import MAX_SERVER_LOCK_AGE_MS, InstanceConfig
from tasktracker.instances.process_probe import ProcessProbe, PsutilProcessProbe

logger = logging.getLogger(__name__)

OPERATOR_COMMANDS = (
    ("status", "Check running instances"),
    ("kill", "Terminate all instances"),
    ("cleanup", "Clean up stale files"),
    ("focus", "Focus existing instance"),
)


class ServerInstanceLock:
    """Acquire and hold the process-level single instance lock.

    Args:
        config: Paths, host and port
        probe: Process liveness probe
        clock: Epoch-millisecond clock
        max_lock_age_ms: Age after which a live-PID lock is still treated as stale
    """

    def __init__(
        self,
        config: InstanceConfig,
        probe: ProcessProbe | None = None,
        clock: Callable[[], int] = now_ms,
        max_lock_age_ms: int = MAX_SERVER_LOCK_AGE_MS,
    ) -> None:
        self.config = config
        self.probe = probe or PsutilProcessProbe()
        self.clock = clock
        self.max_lock_age_ms = max_lock_age_ms
        self._server_socket: socket.socket | None = None
        self._listener: FocusRequestListener | None = None
        self.is_locked = False

    def acquire(self) -> bool:
        """Attempt to acquire the single instance lock.

        Returns:
            True if acquired, False if another instance is running
        """
        try:
            if not self._try_bind_lock_port():
                logger.info("Another instance detected via port binding")
                self._warn_duplicate_instance()
                return False

            if self._is_lock_file_active():
                logger.info("Another instance detected via lock file")
                self._release_lock_port()
                self._warn_duplicate_instance()
                return False

            write_lock_record(self.config.lock_file, LockRecord.create(self.config.version))
            self.is_locked = True
            logger.info("Single instance lock acquired successfully")
            return True
        except KeyboardInterrupt:
            _thread.interrupt_main()
            raise
        except OSError as e:
            logger.error(f"Error acquiring single instance lock: {e}")
            self._release_lock_port()
            return False

    def release(self) -> None:
        """Release the port and remove the lock file."""
        if not self.is_locked:
            return
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        self._release_lock_port()
        remove_file(self.config.lock_file)
        self.is_locked = False
        logger.info("Single instance lock released")

    def listen(self, on_message: Callable[[dict[str, Any]], None]) -> None:
        """Serve messages from other instances on the bound coordination port."""
        if self._server_socket is None:
            raise RuntimeError("Lock port is not bound; call acquire() first")
        if self._listener is None:
            self._listener = FocusRequestListener(self._server_socket, on_message)
            self._listener.start()

    def notify_existing_instance(self, action: str = "focus", timeout: float = 1.0) -> bool:
        """Send a message to the instance holding the port.

        Returns:
            True if the message was delivered
        """
        try:
            send_focus_request(self.config.host, self.config.lock_port, FocusRequest(action=action, timestamp=self.clock()), timeout=timeout)
        except FocusRequestError as e:
            logger.debug(f"Could not notify existing instance: {e}")
            return False
        logger.info("Notified existing instance")
        return True

    def get_lock_info(self) -> LockRecord | None:
        return read_lock_record(self.config.lock_file)

    @property
    def bound_port(self) -> int | None:
        """Actual bound port (differs from config when configured as 0)."""
        if self._server_socket is None:
            return None
        return self._server_socket.getsockname()[1]

    def _try_bind_lock_port(self) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self.config.host, self.config.lock_port))
            sock.listen(8)
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE or getattr(e, "winerror", None) == 10048:
                logger.debug(f"Lock port {self.config.lock_port} is in use")
                return False
            raise
        self._server_socket = sock
        logger.debug(f"Lock port {self.config.lock_port} bound successfully")
        return True

    def _release_lock_port(self) -> None:
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None

    def _is_lock_file_active(self) -> bool:
        lock_file = self.config.lock_file
        if not lock_file.exists():
            return False

        record = read_lock_record(lock_file)
        if record is None:
            logger.warning("Unreadable lock file, assuming stale")
            remove_file(lock_file)
            return False

        if not self.probe.is_alive(record.pid):
            logger.info("Lock file exists but process is not running, removing stale lock")
            remove_file(lock_file)
            return False

        lock_age = self.clock() - record.timestamp
        if lock_age >= self.max_lock_age_ms:
            logger.warning(f"Stale lock file detected (age: {lock_age}ms), removing...")
            remove_file(lock_file)
            return False
        return True

    def _warn_duplicate_instance(self) -> None:
        logger.warning(f"DUPLICATE INSTANCE DETECTED: another instance of {self.config.app_name} is already running")
        record = self.get_lock_info()
        if record is not None:
            uptime = (self.clock() - record.timestamp) // 1000
            logger.warning(f"  PID: {record.pid}, started: {record.start_time}, uptime: {uptime}s")
        logger.warning("To manage instances, use these commands:")
        for command, description in OPERATOR_COMMANDS:
            logger.warning(f"  tasktracker-instances {command:<8} - {description}")
