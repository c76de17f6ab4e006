"""
Tab-layer leader election for Local Task Tracker.

Each UI execution context (browser tab, or any local UI process sharing a
store) constructs one TabCoordinator. Before rendering, the entry point calls
check_and_activate(): True means this tab is the active instance and may
render; False means a live peer owns the application and the caller must show
the "already running" surface.

Leadership is observation based:
- The active tab keeps ActiveInstanceRecord fresh every HEARTBEAT_INTERVAL_MS
- A record older than STALE_THRESHOLD_MS belongs to a crashed tab and is ignored
- Every activation is broadcast; an ACTIVE tab that hears a newer activation
  steps down to STANDBY

Two tabs that start in the same tick can both become ACTIVE until they process
each other's activation message. Equal activation times are settled by the
lower instance id, so exactly one tab stays ACTIVE. The storage record may
still name the tab that stepped down until the survivor calls
check_and_activate() again, which rewrites it. The survivor's heartbeat keeps
it fresh in the meantime.
"""

import logging
import random
import threading
from typing import Callable

from tasktracker.instances.bus import MessageBus
from tasktracker.instances.errors import ChannelUnavailableError, CorruptRecordError
from tasktracker.instances.messages import ActiveInstanceRecord, CoordinationMessage, CoordinatorState, MessageType
from tasktracker.instances.paths import ACTIVE_INSTANCE_KEY, HEARTBEAT_INTERVAL_MS, LAST_HEARTBEAT_KEY, STALE_THRESHOLD_MS
from tasktracker.instances.scheduler import Scheduler, ThreadingScheduler, TimerHandle
from tasktracker.instances.storage import KeyValueStore

logger = logging.getLogger(__name__)


def generate_instance_id(now_ms: int) -> str:
    """Build a per-construction id from creation time and a random salt."""
    return f"task-tracker-{now_ms}-{random.random()}"


class TabCoordinator:
    """Decides whether this tab is the active application instance.

    Args:
        bus: Broadcast endpoint, or None when the runtime has no broadcast support
        store: Key-value store shared by all tabs of the origin
        scheduler: Clock and timer source (defaults to ThreadingScheduler)
        instance_id: Fixed id for this tab (generated when omitted)
        on_duplicate_detected: Called with the live peer's record when check_and_activate() returns False
        on_focus_requested: Called when a peer asks the active tab to come to the foreground
        notifier: Called with (title, body) to raise a local notification
        on_close_requested: Called when the user chooses to close this tab from the duplicate surface
        on_pong: Called with each pong received after ping()
        heartbeat_interval_ms: Heartbeat period while ACTIVE
        stale_threshold_ms: Heartbeat age at which a record is considered abandoned
    """

    def __init__(
        self,
        bus: MessageBus | None,
        store: KeyValueStore,
        scheduler: Scheduler | None = None,
        instance_id: str | None = None,
        on_duplicate_detected: Callable[[ActiveInstanceRecord], None] | None = None,
        on_focus_requested: Callable[[], None] | None = None,
        notifier: Callable[[str, str], None] | None = None,
        on_close_requested: Callable[[], None] | None = None,
        on_pong: Callable[[CoordinationMessage], None] | None = None,
        heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
    ) -> None:
        self.bus = bus
        self.store = store
        self.scheduler = scheduler or ThreadingScheduler()
        self.instance_id = instance_id or generate_instance_id(self.scheduler.now_ms())
        self.on_duplicate_detected = on_duplicate_detected
        self.on_focus_requested = on_focus_requested
        self.notifier = notifier
        self.on_close_requested = on_close_requested
        self.on_pong = on_pong
        self.heartbeat_interval_ms = heartbeat_interval_ms
        self.stale_threshold_ms = stale_threshold_ms

        self._state = CoordinatorState.UNDECIDED
        self._heartbeat: TimerHandle | None = None
        self._activated_at: int | None = None
        self._started = False
        self._stopped = False
        # Handlers from the bus may run on another thread (file/socket transports)
        self._lock = threading.RLock()

    @classmethod
    def connect(cls, bus_factory: Callable[[], MessageBus], store: KeyValueStore, **kwargs) -> "TabCoordinator":
        """Build a coordinator, degrading to no channel if the factory cannot provide one."""
        try:
            bus: MessageBus | None = bus_factory()
        except ChannelUnavailableError as e:
            logger.warning(f"Broadcast channel unsupported in this runtime: {e}")
            bus = None
        return cls(bus, store, **kwargs)

    @property
    def state(self) -> CoordinatorState:
        return self._state

    def is_active_instance(self) -> bool:
        """Check if this instance is currently active."""
        return self._state is CoordinatorState.ACTIVE

    def start(self) -> None:
        """Subscribe to the broadcast channel. Idempotent."""
        with self._lock:
            if self._started:
                return
            self._started = True
            if self.bus is not None:
                self.bus.subscribe(self.handle_message)
            logger.debug(f"Coordinator {self.instance_id} started")

    def stop(self) -> None:
        """Tear down: release the record if ACTIVE, cancel the heartbeat, close the bus."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self.on_unload()
            self._cancel_heartbeat()
            if self.bus is not None:
                self.bus.close()
            logger.debug(f"Coordinator {self.instance_id} stopped")

    def read_record(self) -> ActiveInstanceRecord | None:
        """Read the shared leadership record; corrupt values read as absent."""
        try:
            return ActiveInstanceRecord.from_strings(self.store.get(ACTIVE_INSTANCE_KEY), self.store.get(LAST_HEARTBEAT_KEY))
        except CorruptRecordError as e:
            logger.warning(f"Ignoring corrupt active instance record: {e}")
            return None

    def check_and_activate(self) -> bool:
        """Decide whether this tab should be the active instance.

        Returns:
            True if this tab is (now) active and may render, False if a live peer owns the app
        """
        if self.bus is None:
            # Without a broadcast channel nobody could hand over leadership
            logger.warning("Broadcast channel unavailable; rendering without single-instance check")
            return True

        self.start()
        with self._lock:
            record = self.read_record()
            now = self.scheduler.now_ms()
            if self.is_active_instance():
                # A lost write race can leave the loser's id in the record
                if record is None or record.active_instance_id != self.instance_id:
                    self.store.set(ACTIVE_INSTANCE_KEY, self.instance_id)
                    self._update_heartbeat()
                return True
            if record is not None and not record.is_stale(now, self.stale_threshold_ms):
                logger.info(f"Another tab is already running (instance {record.active_instance_id}, heartbeat age {record.age_ms(now)}ms)")
                self._state = CoordinatorState.STANDBY
                if self.on_duplicate_detected is not None:
                    self.on_duplicate_detected(record)
                return False

            if record is not None:
                logger.info(f"Stale record from {record.active_instance_id} (age {record.age_ms(now)}ms); claiming leadership")
            try:
                self.become_active_instance()
            except ChannelUnavailableError as e:
                logger.warning(f"Broadcast failed during activation, rendering anyway: {e}")
            return True

    def become_active_instance(self) -> None:
        """Claim the record, start the heartbeat and announce the activation."""
        with self._lock:
            self._state = CoordinatorState.ACTIVE
            self._activated_at = self.scheduler.now_ms()
            self.store.set(ACTIVE_INSTANCE_KEY, self.instance_id)
            self._update_heartbeat()
            self._cancel_heartbeat()
            self._heartbeat = self.scheduler.schedule_repeating(self.heartbeat_interval_ms, self._heartbeat_tick)
            logger.info(f"Tab {self.instance_id} is now the active instance")
            activated_at = self._activated_at
        self._post(MessageType.INSTANCE_ACTIVATED, timestamp=activated_at)

    def deactivate(self) -> None:
        """Step down to STANDBY and stop heartbeating."""
        with self._lock:
            if self._state is not CoordinatorState.ACTIVE:
                return
            self._state = CoordinatorState.STANDBY
            self._cancel_heartbeat()
            logger.info(f"Tab {self.instance_id} is no longer the active instance")

    def handle_message(self, message: CoordinationMessage) -> None:
        """Dispatch one broadcast message."""
        if message.instance_id == self.instance_id:
            return

        # State is decided under the lock; replies and callbacks run outside it
        with self._lock:
            active = self.is_active_instance()
            if message.type is MessageType.INSTANCE_ACTIVATED and active and self._loses_to(message):
                logger.info(f"Tab {message.instance_id} activated; stepping down")
                self.deactivate()
                return

        if message.type is MessageType.PING:
            if active:
                self._post(MessageType.PONG)
        elif message.type is MessageType.PONG:
            if self.on_pong is not None:
                self.on_pong(message)
        elif message.type is MessageType.REQUEST_FOCUS:
            if active:
                self._focus_self()

    def request_focus(self) -> None:
        """Ask the active peer to bring itself to the foreground."""
        self._post(MessageType.REQUEST_FOCUS)

    def ping(self) -> None:
        """Probe for an active peer; replies arrive through on_pong."""
        self._post(MessageType.PING)

    def close(self) -> None:
        """User chose to close this duplicate tab."""
        self.stop()
        if self.on_close_requested is not None:
            self.on_close_requested()

    def on_visibility_change(self, visible: bool) -> None:
        """Refresh the heartbeat as soon as a throttled background tab is visible again."""
        if visible and self.is_active_instance():
            self._update_heartbeat()

    def on_unload(self) -> None:
        """Remove the record so the next tab does not wait out the staleness threshold."""
        with self._lock:
            if self.is_active_instance():
                self.store.remove(ACTIVE_INSTANCE_KEY)
                self.store.remove(LAST_HEARTBEAT_KEY)
                self.deactivate()
                logger.debug(f"Tab {self.instance_id} released the active instance record")
            self._cancel_heartbeat()

    def _heartbeat_tick(self) -> None:
        with self._lock:
            if self.is_active_instance():
                self._update_heartbeat()

    def _update_heartbeat(self) -> None:
        self.store.set(LAST_HEARTBEAT_KEY, str(self.scheduler.now_ms()))

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    def _loses_to(self, activation: CoordinationMessage) -> bool:
        # Newest claim wins; simultaneous claims go to the lower instance id
        mine = (self._activated_at or 0, self.instance_id)
        theirs = (activation.timestamp, activation.instance_id)
        return theirs[0] > mine[0] or (theirs[0] == mine[0] and theirs[1] < mine[1])

    def _post(self, message_type: MessageType, timestamp: int | None = None) -> None:
        if self.bus is None:
            raise ChannelUnavailableError("No broadcast channel")
        if timestamp is None:
            timestamp = self.scheduler.now_ms()
        self.bus.post(CoordinationMessage(type=message_type, instance_id=self.instance_id, timestamp=timestamp))

    def _focus_self(self) -> None:
        logger.info(f"Focus requested for active tab {self.instance_id}")
        if self.on_focus_requested is not None:
            self.on_focus_requested()
        if self.notifier is not None:
            self.notifier("Local Task Tracker", "Application is already running in this tab.")
