"""
Logging setup
Every module obtains its logger through get_logger(__name__); setup_logging()
is called once by the coordinator with the [logging] config section
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "worklens"

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the package root logger"""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure package logging

    Args:
        config: [logging] section, supports:
            - level: console level (default INFO)
            - file: log file path, empty disables file logging
            - file_level: file handler level (default DEBUG)
            - max_bytes / backup_count: rotation settings
    """
    global _configured

    config = config or {}
    root = logging.getLogger(ROOT_LOGGER_NAME)
    # Capture everything, handlers filter
    root.setLevel(logging.DEBUG)
    root.propagate = False

    formatter = logging.Formatter(config.get("format", DEFAULT_FORMAT))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_level(config.get("level", "INFO"), logging.INFO))
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    log_file = str(config.get("file", "") or "").strip()
    if log_file:
        try:
            path = Path(log_file).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=int(config.get("max_bytes", 10_000_000)),
                backupCount=int(config.get("backup_count", 3)),
                encoding="utf-8",
            )
            file_handler.setLevel(_level(config.get("file_level", "DEBUG"), logging.DEBUG))
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            # Keep console logging
            sys.stderr.write(f"worklens: WARNING: failed to open log file {log_file!r}: {e}\n")

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)

    _configured = True
    root.debug(f"✓ Logging configured (console={console.level}, file={log_file or 'disabled'})")


def is_configured() -> bool:
    return _configured


def _level(value: Any, default: int) -> int:
    return getattr(logging, str(value).upper(), default)
