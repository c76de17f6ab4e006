"""Pytest configuration and fixtures for instance coordination unit tests."""

import io
from pathlib import Path

import pytest
from rich.console import Console

from tasktracker.instances.bus import BroadcastHub
from tasktracker.instances.paths import InstanceConfig
from tasktracker.instances.process_probe import ProcessProbe
from tasktracker.instances.scheduler import VirtualScheduler
from tasktracker.instances.storage import MemoryStore
from tasktracker.instances.tab_coordinator import TabCoordinator


class FakeProcessProbe(ProcessProbe):
    """Scriptable probe recording every signal it is asked to send.

    Attributes:
        alive: PIDs currently considered running
        exits_on_terminate: Whether a graceful terminate makes the PID exit
        calls: (action, pid) tuples in call order
    """

    def __init__(self, alive: set[int] | None = None, exits_on_terminate: bool = True, supports_graceful: bool = True) -> None:
        self.alive = set(alive or ())
        self.exits_on_terminate = exits_on_terminate
        self.supports_graceful = supports_graceful
        self.calls: list[tuple[str, int]] = []
        self.wait_timeouts: list[float] = []
        self.fail_with: Exception | None = None

    def is_alive(self, pid: int) -> bool:
        self.calls.append(("is_alive", pid))
        return pid in self.alive

    def terminate_gracefully(self, pid: int) -> None:
        self.calls.append(("terminate", pid))
        if self.fail_with is not None:
            raise self.fail_with
        if self.exits_on_terminate:
            self.alive.discard(pid)

    def terminate_forcefully(self, pid: int) -> None:
        self.calls.append(("kill", pid))
        if self.fail_with is not None:
            raise self.fail_with
        self.alive.discard(pid)

    def wait_for_exit(self, pid: int, timeout: float) -> bool:
        self.calls.append(("wait", pid))
        self.wait_timeouts.append(timeout)
        return pid not in self.alive

    def signals(self) -> list[tuple[str, int]]:
        return [call for call in self.calls if call[0] in ("terminate", "kill")]


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler(start_ms=1_000_000)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub("task-tracker-instances")


@pytest.fixture
def make_tab(hub, store, scheduler):
    """Factory for coordinators sharing one hub, store and clock."""
    created: list[TabCoordinator] = []

    def _make(instance_id: str, **kwargs) -> TabCoordinator:
        tab = TabCoordinator(hub.connect(), store, scheduler, instance_id=instance_id, **kwargs)
        created.append(tab)
        return tab

    yield _make

    for tab in created:
        tab.stop()


@pytest.fixture
def probe() -> FakeProcessProbe:
    return FakeProcessProbe()


@pytest.fixture
def config(tmp_path: Path) -> InstanceConfig:
    return InstanceConfig(
        lock_file=tmp_path / ".app-instance.lock",
        port_config_file=tmp_path / "port-config.json",
        lock_port=58765,
        log_file=tmp_path / "logs" / "instances.log",
    )


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(output: io.StringIO) -> Console:
    return Console(file=output, width=200, highlight=False, color_system=None)
