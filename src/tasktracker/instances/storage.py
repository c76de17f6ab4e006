"""
Shared key-value stores for the tab-layer leadership record.

Every tab of an origin sees the same store. Values are plain strings, as in
browser localStorage. Two implementations:

- MemoryStore: in-process dictionary shared by tabs created in one process
- JsonFileStore: JSON file on disk shared by several local processes; writes
  are atomic (temp file + replace) and failed writes are logged, not raised;
  corrupt content reads as an empty store
"""

import _thread
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal string-to-string store interface."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value for key, or None when absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key; no error when it is absent."""


class MemoryStore(KeyValueStore):
    """Thread-safe in-memory store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)


class JsonFileStore(KeyValueStore):
    """File-backed store for coordinators running in separate processes.

    There is no cross-process lock: concurrent writers race and the last
    replace wins, matching the shared-storage semantics of browser tabs.

    Args:
        path: JSON file holding a flat object of string values
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except KeyboardInterrupt:
            _thread.interrupt_main()
            raise
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Treating unreadable store {self.path} as empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Treating malformed store {self.path} as empty")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        """Write the store atomically; a failed write is logged and dropped."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.path)
        except KeyboardInterrupt:
            _thread.interrupt_main()
            raise
        except OSError as e:
            logger.error(f"Failed to save store {self.path}: {e}")

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)
