"""Pytest configuration shared by all tasktracker tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep TASKTRACKER_* overrides from the developer shell out of tests."""
    for name in ("TASKTRACKER_LOCK_FILE", "TASKTRACKER_PORT_CONFIG", "TASKTRACKER_LOCK_PORT", "TASKTRACKER_VERSION", "TASKTRACKER_DEV_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_tasktracker_logger():
    """Drop handlers installed by setup_logging() so log files close between tests."""
    yield
    logger = logging.getLogger("tasktracker")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
