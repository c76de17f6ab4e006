"""
Local Task Tracker single-instance coordination.

Two parallel layers solve the same problem without a central coordinator:

- TabCoordinator: heartbeat-based leader election among UI tabs sharing a store
  and a broadcast channel
- ProcessInstanceManager: lock-file inspection, termination and cleanup of the
  running server process, plus focus requests over the coordination port
"""

from tasktracker.instances.bus import BroadcastHub, InMemoryMessageBus, MessageBus
from tasktracker.instances.errors import (
    ChannelUnavailableError,
    CorruptRecordError,
    FocusRequestError,
    InstanceCoordinationError,
    TerminationError,
)
from tasktracker.instances.instance_manager import ProcessInstanceManager
from tasktracker.instances.messages import (
    ActiveInstanceRecord,
    CoordinationMessage,
    CoordinatorState,
    FocusRequest,
    InstanceInfo,
    LockRecord,
    MessageType,
)
from tasktracker.instances.paths import InstanceConfig
from tasktracker.instances.process_probe import ProcessProbe, PsutilProcessProbe
from tasktracker.instances.scheduler import Scheduler, ThreadingScheduler, TimerHandle, VirtualScheduler
from tasktracker.instances.server_lock import ServerInstanceLock
from tasktracker.instances.storage import JsonFileStore, KeyValueStore, MemoryStore
from tasktracker.instances.tab_coordinator import TabCoordinator

__all__ = [
    "ActiveInstanceRecord",
    "BroadcastHub",
    "ChannelUnavailableError",
    "CoordinationMessage",
    "CoordinatorState",
    "CorruptRecordError",
    "FocusRequest",
    "FocusRequestError",
    "InMemoryMessageBus",
    "InstanceConfig",
    "InstanceCoordinationError",
    "InstanceInfo",
    "JsonFileStore",
    "KeyValueStore",
    "LockRecord",
    "MemoryStore",
    "MessageBus",
    "MessageType",
    "ProcessInstanceManager",
    "ProcessProbe",
    "PsutilProcessProbe",
    "Scheduler",
    "ServerInstanceLock",
    "TabCoordinator",
    "TerminationError",
    "ThreadingScheduler",
    "TimerHandle",
    "VirtualScheduler",
]
