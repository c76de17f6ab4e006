"""
Lock file persistence.

The lock file is a small JSON document written by the running server at
launch. It is never removed on crash, so readers must expect stale and
corrupt content. A corrupt file reads exactly like a missing one.
"""

import _thread
import json
import logging
from pathlib import Path

from tasktracker.instances.errors import CorruptRecordError
from tasktracker.instances.messages import LockRecord

logger = logging.getLogger(__name__)


def read_lock_record(path: Path) -> LockRecord | None:
    """Read and parse the lock file.

    Returns:
        LockRecord, or None when the file is absent or unparsable
    """
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return LockRecord.from_dict(data)
    except (json.JSONDecodeError, UnicodeDecodeError, CorruptRecordError) as e:
        logger.warning(f"Ignoring corrupt lock file {path}: {e}")
        return None
    except KeyboardInterrupt:
        _thread.interrupt_main()
        raise
    except OSError as e:
        logger.warning(f"Could not read lock file {path}: {e}")
        return None


def write_lock_record(path: Path, record: LockRecord) -> None:
    """Write the lock file atomically (pretty-printed, 2-space indent)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_name(path.name + ".tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(record.to_dict(), f, indent=2)
    temp_file.replace(path)
    logger.debug(f"Lock file created: {path}")


def remove_file(path: Path) -> bool:
    """Delete path if present.

    Returns:
        True if a file was removed, False if it did not exist
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug(f"Removed {path}")
    return True
