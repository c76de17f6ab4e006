"""
Integration tests for ServerInstanceLock and the focus request channel.

These bind real sockets on 127.0.0.1. Port 0 is used so the OS picks a free
port; the bound port is then shared with the second party.
"""

import dataclasses
import json
import os
import queue
import socket

import pytest

from tasktracker.instances.errors import FocusRequestError
from tasktracker.instances.focus_channel import send_focus_request
from tasktracker.instances.instance_manager import ProcessInstanceManager
from tasktracker.instances.paths import InstanceConfig
from tasktracker.instances.process_probe import PsutilProcessProbe
from tasktracker.instances.server_lock import ServerInstanceLock

pytestmark = pytest.mark.integration


@pytest.fixture
def config(tmp_path) -> InstanceConfig:
    return InstanceConfig(
        lock_file=tmp_path / ".app-instance.lock",
        port_config_file=tmp_path / "port-config.json",
        lock_port=0,
        log_file=tmp_path / "instances.log",
    )


@pytest.fixture
def server_lock(config):
    lock = ServerInstanceLock(config, probe=PsutilProcessProbe())
    yield lock
    lock.release()


def unused_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestAcquire:
    def test_acquire_writes_lock_for_this_process(self, server_lock, config):
        assert server_lock.acquire() is True

        data = json.loads(config.lock_file.read_text())
        assert data["pid"] == os.getpid()
        assert data["version"] == "1.0.0"
        assert set(data) == {"pid", "startTime", "version", "timestamp"}
        assert server_lock.bound_port

    def test_release_removes_lock_and_frees_port(self, server_lock, config):
        server_lock.acquire()
        port = server_lock.bound_port

        server_lock.release()

        assert not config.lock_file.exists()
        with socket.socket() as s:
            s.bind(("127.0.0.1", port))

    def test_port_in_use_blocks_second_server(self, server_lock, config, caplog):
        server_lock.acquire()
        second = ServerInstanceLock(dataclasses.replace(config, lock_port=server_lock.bound_port))

        assert second.acquire() is False
        assert "DUPLICATE INSTANCE DETECTED" in caplog.text
        # First server's lock is untouched
        assert json.loads(config.lock_file.read_text())["pid"] == os.getpid()

    def test_live_lock_file_blocks_even_with_free_port(self, config):
        # This test process is alive, so a fresh lock naming it is active
        other = ServerInstanceLock(config)
        config.lock_file.write_text(json.dumps({"pid": os.getpid(), "startTime": "", "version": "1.0.0", "timestamp": other.clock()}))

        assert other.acquire() is False
        assert other.bound_port is None
        assert config.lock_file.exists()

    def test_old_live_lock_is_replaced(self, config):
        lock = ServerInstanceLock(config, max_lock_age_ms=1000)
        config.lock_file.write_text(json.dumps({"pid": os.getpid(), "startTime": "", "version": "0.9.0", "timestamp": lock.clock() - 5000}))

        try:
            assert lock.acquire() is True
            assert json.loads(config.lock_file.read_text())["version"] == "1.0.0"
        finally:
            lock.release()

    def test_corrupt_lock_is_replaced(self, server_lock, config):
        config.lock_file.write_text("{{{")

        assert server_lock.acquire() is True
        assert json.loads(config.lock_file.read_text())["pid"] == os.getpid()


class TestFocusChannel:
    def test_cli_focus_reaches_listening_server(self, server_lock, config, tmp_path):
        received: queue.Queue = queue.Queue()
        assert server_lock.acquire()
        server_lock.listen(received.put)
        manager = ProcessInstanceManager(dataclasses.replace(config, lock_port=server_lock.bound_port))

        assert manager.focus_instance() is True

        message = received.get(timeout=5.0)
        assert message["action"] == "focus"
        assert isinstance(message["timestamp"], int)

    def test_notify_existing_instance(self, server_lock, config):
        received: queue.Queue = queue.Queue()
        server_lock.acquire()
        server_lock.listen(received.put)
        client = ServerInstanceLock(dataclasses.replace(config, lock_port=server_lock.bound_port))

        assert client.notify_existing_instance("focus") is True
        assert received.get(timeout=5.0)["action"] == "focus"

    def test_malformed_message_is_ignored(self, server_lock):
        received: queue.Queue = queue.Queue()
        server_lock.acquire()
        server_lock.listen(received.put)

        with socket.create_connection(("127.0.0.1", server_lock.bound_port)) as s:
            s.sendall(b"not json")
        send_focus_request("127.0.0.1", server_lock.bound_port)

        # Only the valid message arrives
        assert received.get(timeout=5.0)["action"] == "focus"
        assert received.empty()

    def test_connect_failure_raises(self):
        with pytest.raises(FocusRequestError) as exc_info:
            send_focus_request("127.0.0.1", unused_port(), timeout=2.0)

        assert exc_info.value.host == "127.0.0.1"

    def test_notify_without_server_returns_false(self, config):
        client = ServerInstanceLock(dataclasses.replace(config, lock_port=unused_port()))

        assert client.notify_existing_instance() is False

    def test_listen_requires_acquire(self, server_lock):
        with pytest.raises(RuntimeError):
            server_lock.listen(lambda message: None)
