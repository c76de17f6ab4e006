"""
Instance coordination paths and timing configuration.

Centralized definitions for the files, port and timing constants shared by the
tab coordinator, the process instance manager and the server-side lock.

Modes:
- Production (default): logs in ~/.tasktracker/logs/
- Development (TASKTRACKER_DEV_MODE=1): logs in ~/.tasktracker/logs_dev/ (isolated from prod)

Lock and port-config files live in the working directory of the server
process, the same place the backend writes them at launch.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

APP_NAME = "Local Task Tracker"
DEFAULT_VERSION = "1.0.0"

# Process layer
LOCK_FILE_NAME = ".app-instance.lock"
PORT_CONFIG_FILE_NAME = "port-config.json"
LOCK_PORT = 58765  # High port number to avoid conflicts
LOCK_HOST = "127.0.0.1"
KILL_GRACE_PERIOD_S = 5.0
MAX_SERVER_LOCK_AGE_MS = 5 * 60 * 1000

# Tab layer
CHANNEL_NAME = "task-tracker-instances"
ACTIVE_INSTANCE_KEY = "task-tracker-active-instance"
LAST_HEARTBEAT_KEY = "task-tracker-last-heartbeat"
HEARTBEAT_INTERVAL_MS = 5000
STALE_THRESHOLD_MS = 10000  # 2x heartbeat interval tolerates one missed tick


def is_dev_mode() -> bool:
    """Check if development mode is enabled."""
    return os.environ.get("TASKTRACKER_DEV_MODE") == "1"


def get_log_dir() -> Path:
    """Return the log directory for the current mode."""
    if is_dev_mode():
        return Path.home() / ".tasktracker" / "logs_dev"
    return Path.home() / ".tasktracker" / "logs"


def _env_port(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if not 0 < port < 65536:
        logger.warning(f"Ignoring out-of-range {name}={port}, using {default}")
        return default
    return port


@dataclass(frozen=True)
class InstanceConfig:
    """Resolved configuration for process-layer instance management.

    Attributes:
        lock_file: Path of the JSON lock file written by the running server
        port_config_file: Path of the port metadata artifact (only existence matters)
        lock_port: Fixed TCP coordination port
        host: Host the coordination port is bound on
        grace_period_s: Seconds between graceful and forceful termination
        log_file: Rotating diagnostic log file
        app_name: Human-readable application name used in operator output
        version: Version string recorded in lock files created by this process
    """

    lock_file: Path
    port_config_file: Path
    lock_port: int = LOCK_PORT
    host: str = LOCK_HOST
    grace_period_s: float = KILL_GRACE_PERIOD_S
    log_file: Path = field(default_factory=lambda: get_log_dir() / "instances.log")
    app_name: str = APP_NAME
    version: str = DEFAULT_VERSION

    @classmethod
    def from_env(cls, cwd: Path | None = None) -> "InstanceConfig":
        """Build configuration from the environment.

        Args:
            cwd: Base directory for the lock and port-config files (defaults to Path.cwd())

        Returns:
            InstanceConfig with environment overrides applied
        """
        base = cwd if cwd is not None else Path.cwd()
        lock_file = Path(os.environ.get("TASKTRACKER_LOCK_FILE", str(base / LOCK_FILE_NAME)))
        port_config = Path(os.environ.get("TASKTRACKER_PORT_CONFIG", str(base / PORT_CONFIG_FILE_NAME)))
        return cls(
            lock_file=lock_file,
            port_config_file=port_config,
            lock_port=_env_port("TASKTRACKER_LOCK_PORT", LOCK_PORT),
            version=os.environ.get("TASKTRACKER_VERSION", DEFAULT_VERSION),
        )
