"""
Logging configuration for the inventory AI backend.

Console output always; a rotating file log when LOG_DIR is set.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str | None = None,
    log_dir: str | Path | None = None,
) -> logging.Logger:
    """Configure the root logger once per process.

    Args:
        level: Log level name; defaults to the LOG_LEVEL env var or INFO.
        log_dir: Directory for the rotating log file; defaults to LOG_DIR.
            No file handler is installed when neither is given.

    Returns:
        The root logger.
    """
    root = logging.getLogger()

    # Avoid duplicate handlers on reload
    if getattr(root, "_inventory_ai_configured", False):
        return root

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    log_dir = log_dir or os.getenv("LOG_DIR")
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "inventory_ai.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root._inventory_ai_configured = True  # type: ignore[attr-defined]
    return root
