"""
Typed records and messages for instance coordination.

This module defines typed dataclasses for everything that crosses a process or
tab boundary:

- ActiveInstanceRecord: tab-layer leadership record in the shared key-value store
- CoordinationMessage: tagged messages on the tab broadcast channel
- LockRecord: process-layer lock file written by the running server
- InstanceInfo: a LockRecord plus the observed liveness of its PID
- FocusRequest: single-shot JSON message sent to the coordination port
"""

import json
import os
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tasktracker.instances.errors import CorruptRecordError


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class MessageType(Enum):
    """Closed set of broadcast channel message variants."""

    INSTANCE_ACTIVATED = "instance-activated"
    PING = "ping"
    PONG = "pong"
    REQUEST_FOCUS = "request-focus"

    @classmethod
    def from_string(cls, value: str) -> "MessageType":
        """Convert string to MessageType.

        Raises:
            CorruptRecordError: If value is not a known message type
        """
        try:
            return cls(value)
        except ValueError as e:
            raise CorruptRecordError(f"Unknown message type: {value!r}") from e


class CoordinatorState(Enum):
    """Tab coordinator state."""

    UNDECIDED = "undecided"
    STANDBY = "standby"
    ACTIVE = "active"


@dataclass(frozen=True)
class CoordinationMessage:
    """Tab → Tab: broadcast channel message.

    Attributes:
        type: Message variant
        instance_id: Id of the sending tab
        timestamp: Epoch milliseconds when the message was created
    """

    type: MessageType
    instance_id: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire shape."""
        return {"type": self.type.value, "instanceId": self.instance_id, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Any) -> "CoordinationMessage":
        """Create CoordinationMessage from its wire dictionary.

        Raises:
            CorruptRecordError: If data is not a well-formed message
        """
        if not isinstance(data, dict):
            raise CorruptRecordError(f"Message must be an object, got {type(data).__name__}")
        instance_id = data.get("instanceId")
        if not isinstance(instance_id, str):
            raise CorruptRecordError("Message is missing instanceId")
        timestamp = data.get("timestamp", now_ms())
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise CorruptRecordError(f"Invalid message timestamp: {timestamp!r}")
        return cls(type=MessageType.from_string(data.get("type", "")), instance_id=instance_id, timestamp=int(timestamp))


@dataclass(frozen=True)
class ActiveInstanceRecord:
    """Tab-layer leadership record.

    Attributes:
        active_instance_id: Id of the tab that last claimed leadership
        last_heartbeat: Epoch milliseconds of the owner's latest heartbeat
    """

    active_instance_id: str
    last_heartbeat: int

    def age_ms(self, now: int) -> int:
        """Milliseconds since the last heartbeat."""
        return now - self.last_heartbeat

    def is_stale(self, now: int, threshold_ms: int) -> bool:
        """True when the owner missed enough heartbeats to be presumed dead."""
        return self.age_ms(now) >= threshold_ms

    @classmethod
    def from_strings(cls, instance_id: str | None, heartbeat: str | None) -> "ActiveInstanceRecord | None":
        """Parse the two plain-string storage values.

        Returns:
            ActiveInstanceRecord, or None when either key is absent

        Raises:
            CorruptRecordError: If the heartbeat is not an integer
        """
        if not instance_id or not heartbeat:
            return None
        try:
            return cls(active_instance_id=instance_id, last_heartbeat=int(heartbeat))
        except ValueError as e:
            raise CorruptRecordError(f"Invalid heartbeat value: {heartbeat!r}") from e


@dataclass
class LockRecord:
    """Process-layer lock file contents.

    The timestamp records when the lock was created. It is not a heartbeat;
    liveness comes from probing the PID.

    Attributes:
        pid: Process ID of the server that wrote the lock
        start_time: ISO-8601 start time of that process
        version: Application version string
        timestamp: Epoch milliseconds when the lock file was written
    """

    pid: int
    start_time: str
    version: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk JSON shape."""
        return {"pid": self.pid, "startTime": self.start_time, "version": self.version, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Any) -> "LockRecord":
        """Create LockRecord from parsed lock file JSON.

        Raises:
            CorruptRecordError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise CorruptRecordError("Lock file must contain a JSON object")
        pid = data.get("pid")
        timestamp = data.get("timestamp")
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
            raise CorruptRecordError(f"Invalid pid in lock file: {pid!r}")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise CorruptRecordError(f"Invalid timestamp in lock file: {timestamp!r}")
        return cls(
            pid=pid,
            start_time=str(data.get("startTime", "")),
            version=str(data.get("version", "unknown")),
            timestamp=int(timestamp),
        )

    @classmethod
    def create(cls, version: str, pid: int | None = None) -> "LockRecord":
        """Build a lock record for the current (or given) process."""
        return cls(
            pid=pid if pid is not None else os.getpid(),
            start_time=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            version=version,
            timestamp=now_ms(),
        )


@dataclass
class InstanceInfo:
    """A lock record together with its observed liveness.

    Attributes:
        record: The lock file contents
        is_running: Whether the recorded PID is alive
        lock_age_ms: Milliseconds since the lock was written
    """

    record: LockRecord
    is_running: bool
    lock_age_ms: int

    @property
    def pid(self) -> int:
        return self.record.pid

    @property
    def uptime_ms(self) -> int:
        # Uptime is measured from lock creation, same as lock age
        return self.lock_age_ms

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data.update(isRunning=self.is_running, lockAge=self.lock_age_ms, uptime=self.uptime_ms)
        return data


@dataclass(frozen=True)
class FocusRequest:
    """CLI → running instance: coordination port message.

    Attributes:
        action: Requested action (always "focus" from the CLI)
        timestamp: Epoch milliseconds when the request was created
    """

    action: str = "focus"
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def encode(self) -> bytes:
        """Encode as the single UTF-8 JSON payload written to the socket."""
        return json.dumps(self.to_dict()).encode("utf-8")
