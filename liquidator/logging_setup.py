"""Logging configuration — console output plus optional timed activity logs."""
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

UPDATES_LOGGER = "liquidator.updates"
ACTIONS_LOGGER = "liquidator.actions"


def configure_logging(level: str = "INFO", log_dir: str | Path | None = None) -> None:
    """Configure root logging and, when ``log_dir`` is set, the activity logs.

    Account updates and liquidation actions go to two append-only files named
    after the process start time, in addition to the console.
    """
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric_level)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    if log_dir:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        for name in (UPDATES_LOGGER, ACTIONS_LOGGER):
            activity = logging.getLogger(name)
            for old in list(activity.handlers):
                if isinstance(old, logging.FileHandler):
                    activity.removeHandler(old)
                    old.close()
            file_handler = logging.FileHandler(directory / f"{name}.{stamp}.log")
            file_handler.setFormatter(logging.Formatter("%(asctime)s: %(message)s"))
            activity.addHandler(file_handler)
