"""Diagnostic logging for instance tooling."""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Setup logging for the instance CLI.

    Args:
        verbose: Also log DEBUG and above to stderr through rich
        log_file: Daily-rotating log file (skipped when None or not writable)
    """
    logger = logging.getLogger("tasktracker")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if verbose:
        console_handler = RichHandler(show_path=False, markup=False, rich_tracebacks=True)
        console_handler.setLevel(logging.DEBUG)
        logger.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            # Rotates daily at midnight, keeps 2 backups
            file_handler = TimedRotatingFileHandler(str(log_file), when="midnight", interval=1, backupCount=2, utc=False)
        except OSError as e:
            logger.warning(f"File logging disabled ({log_file}): {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
            logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
