"""Unit tests for the broadcast hub and the shared key-value stores."""

import json

import pytest

from tasktracker.instances.bus import BroadcastHub
from tasktracker.instances.errors import ChannelUnavailableError
from tasktracker.instances.messages import CoordinationMessage, MessageType
from tasktracker.instances.storage import JsonFileStore, MemoryStore

pytestmark = pytest.mark.unit


def msg(sender: str, ts: int = 1) -> CoordinationMessage:
    return CoordinationMessage(MessageType.PING, sender, ts)


class TestBroadcastHub:
    def test_sender_does_not_receive_own_message(self):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got_a, got_b = [], []
        a.subscribe(got_a.append)
        b.subscribe(got_b.append)

        a.post(msg("a"))
        hub.deliver_pending()

        assert got_a == []
        assert [m.instance_id for m in got_b] == ["a"]

    def test_delivery_is_deferred_until_pumped(self):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)

        a.post(msg("a"))

        assert got == []
        assert hub.pending_count() == 1
        assert hub.deliver_pending() == 1
        assert len(got) == 1

    def test_fifo_per_sender(self):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)

        for ts in range(5):
            a.post(msg("a", ts))
        hub.deliver_pending()

        assert [m.timestamp for m in got] == [0, 1, 2, 3, 4]

    def test_deliver_limit(self):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)
        a.post(msg("a", 1))
        a.post(msg("a", 2))

        assert hub.deliver_pending(limit=1) == 1
        assert [m.timestamp for m in got] == [1]

    def test_synchronous_hub_delivers_in_post(self):
        hub = BroadcastHub("test", synchronous=True)
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)

        a.post(msg("a"))

        assert len(got) == 1

    def test_closed_endpoint_rejects_post_and_stops_receiving(self):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)
        a.post(msg("a"))
        b.close()
        hub.deliver_pending()

        assert got == []
        with pytest.raises(ChannelUnavailableError):
            b.post(msg("b"))

    def test_malformed_payload_is_dropped(self, caplog):
        hub = BroadcastHub("test")
        a, b = hub.connect(), hub.connect()
        got = []
        b.subscribe(got.append)

        hub._publish(a, {"type": "shutdown", "instanceId": "a", "timestamp": 1})
        hub.deliver_pending()

        assert got == []
        assert "Dropping malformed message" in caplog.text

    def test_handler_error_does_not_break_delivery(self):
        hub = BroadcastHub("test")
        a, b, c = hub.connect(), hub.connect(), hub.connect()
        got = []

        def boom(_message):
            raise RuntimeError("handler bug")

        b.subscribe(boom)
        c.subscribe(got.append)
        a.post(msg("a"))
        hub.deliver_pending()

        assert len(got) == 1


class TestMemoryStore:
    def test_get_set_remove(self):
        store = MemoryStore()

        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.remove("k")
        store.remove("k")
        assert store.snapshot() == {}


class TestJsonFileStore:
    def test_values_visible_across_instances(self, tmp_path):
        path = tmp_path / "store.json"
        writer = JsonFileStore(path)
        reader = JsonFileStore(path)

        writer.set("task-tracker-active-instance", "tab-a")
        writer.set("task-tracker-last-heartbeat", "1000")

        assert reader.get("task-tracker-active-instance") == "tab-a"
        assert json.loads(path.read_text()) == {"task-tracker-active-instance": "tab-a", "task-tracker-last-heartbeat": "1000"}
        assert not path.with_suffix(".tmp").exists()

    def test_remove_missing_key_is_noop(self, tmp_path):
        store = JsonFileStore(tmp_path / "store.json")

        store.remove("absent")

        assert not (tmp_path / "store.json").exists()

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", ""])
    def test_corrupt_file_reads_as_empty(self, tmp_path, content):
        path = tmp_path / "store.json"
        path.write_text(content)
        store = JsonFileStore(path)

        assert store.get("anything") is None
        store.set("k", "v")
        assert store.get("k") == "v"

    def test_failed_write_is_logged_not_raised(self, tmp_path, caplog):
        path = tmp_path / "store.json"
        (tmp_path / "store.tmp").mkdir()
        store = JsonFileStore(path)

        store.set("k", "v")

        assert store.get("k") is None
        assert not path.exists()
        assert "Failed to save store" in caplog.text
