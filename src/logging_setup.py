"""
Logging configuration for LeadScan.
Rotating log file plus stderr, so unattended scans leave a trail and
stdout stays free for CLI output.
"""

import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .config import LOG_DIR

ROOT_LOGGER = "leadscan"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s.%(funcName)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handlers(log_file: Path, max_bytes: int, backup_count: int) -> List[logging.Handler]:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return [
        logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ),
        logging.StreamHandler(sys.stderr),
    ]


def setup_logging(
    level: int = logging.INFO,
    log_file: Path = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the leadscan logger. Safe to call more than once: later calls
    only adjust the level.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)

    if not root.handlers:
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        for handler in _handlers(log_file or LOG_DIR / "leadscan.log", max_bytes, backup_count):
            handler.setFormatter(formatter)
            root.addHandler(handler)

    for handler in root.handlers:
        handler.setLevel(level)
    return root


def get_logger(module_name: str) -> logging.Logger:
    """Child of the leadscan logger for one module."""
    return logging.getLogger(f"{ROOT_LOGGER}.{module_name}")


class RunContext:
    """
    Wraps one scan run: logs a banner on entry and a summary built from the
    run's progress counters on exit. Exceptions are logged, never swallowed.
    """

    def __init__(self, logger: logging.Logger, progress, label: str = "scan"):
        self.logger = logger
        self.progress = progress
        self.label = label
        self.run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self.errors = 0
        self._started = None

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.info(f"{self.label} {self.run_id} started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.monotonic() - self._started
        self.logger.info(
            f"{self.label} {self.run_id} {self.progress.status} in {elapsed:.1f}s: "
            f"{self.progress.businesses_scanned} scanned, "
            f"{self.progress.new_leads_found} new leads, "
            f"{self.errors} errors"
        )
        if exc_type:
            self.logger.error(f"{self.label} {self.run_id} aborted: {exc_type.__name__}: {exc_val}")
        return False

    def record_error(self):
        self.errors += 1
