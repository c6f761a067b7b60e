"""Logger setup shared by the server, the capture client and the CLI."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import Config

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _level_from_config() -> int:
    if Config.DEBUG:
        return logging.DEBUG
    return _LEVELS.get(Config.LOG_LEVEL.upper(), logging.INFO)


def get_logger(name: str, log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Creates a logger under the ``framecast`` namespace that writes to:
      - stderr (console)
      - <log_dir>/framecast.log (rotating: 5MB x 5 files)
    Idempotent: handlers are attached once to the package root logger.
    """
    root = logging.getLogger("framecast")
    if not root.handlers:
        log_level = _LEVELS.get(level.upper(), logging.INFO) if level else _level_from_config()
        fmt = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        root.addHandler(ch)

        target_dir = log_dir or Config.LOG_DIR
        if target_dir:
            try:
                os.makedirs(target_dir, exist_ok=True)
                fh = RotatingFileHandler(
                    filename=os.path.join(target_dir, "framecast.log"),
                    maxBytes=5_000_000,
                    backupCount=5,
                    encoding="utf-8",
                )
                fh.setFormatter(fmt)
                root.addHandler(fh)
            except OSError as e:
                root.warning(f"File logging disabled ({target_dir}): {e}")

        root.setLevel(log_level)
        root.propagate = False

    if name == "framecast" or name.startswith("framecast."):
        return logging.getLogger(name)
    return logging.getLogger(f"framecast.{name}")
