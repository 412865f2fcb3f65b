"""Logging setup shared by the sync daemon and the export CLI.

Component modules log through get_logger(); an entry point calls
setup_logging() once, which attaches handlers to the package logger so
adapter, normalizer and indexer records end up in the entry point's log
file under ~/session-canon/logs/.
"""

import logging
import os
import sys
from pathlib import Path

PACKAGE_LOGGER = "session_canon"

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "session-canon" / "logs"

# Overrides the level passed to setup_logging (e.g. DEBUG)
LOG_LEVEL_ENV = "SESSION_CANON_LOG_LEVEL"


def _level_from_env(default: int) -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for an entry point.

    Args:
        name: Entry point name; also the log file name (<name>.log)
        log_dir: Directory for log files (defaults to ~/session-canon/logs/)
        level: Logging level, unless SESSION_CANON_LOG_LEVEL is set
        console: Whether to also log to stderr (defaults to True)

    Returns:
        The entry point's logger
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    level = _level_from_env(level)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    log_file = log_dir / f"{name}.log"
    already_configured = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in package_logger.handlers
    )
    if already_configured:
        return get_logger(name)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    # stderr keeps stdout free for JSONL export
    has_console = any(type(h) is logging.StreamHandler for h in package_logger.handlers)
    if console and not has_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    return get_logger(name)


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, named session_canon.<name>."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
