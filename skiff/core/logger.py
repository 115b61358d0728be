"""Logging for Skiff: rich console output plus a per-project log file."""
import logging
import os
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)

ROOT_LOGGER = "skiff"
LOG_DIR_NAME = ".skiff"
LOG_FILE_NAME = "skiff.log"
FALLBACK_LOG_FILE = Path("/tmp") / LOG_FILE_NAME

FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# Console output stays at INFO; the namespace level only opens up for file logs
logging.getLogger(ROOT_LOGGER).setLevel(logging.INFO)

_file_handler: Optional[logging.FileHandler] = None


def default_log_file(working_dir: Path = Path(".")) -> Path:
    """Project log file, kept beside the reconcile lock."""
    return Path(working_dir) / LOG_DIR_NAME / LOG_FILE_NAME


def setup_file_logging(
    log_file: Optional[str] = None,
    verbose: bool = False,
    working_dir: Path = Path("."),
) -> Path:
    """Send every skiff.* record to a log file.

    Args:
        log_file: Explicit log file (defaults to <working_dir>/.skiff/skiff.log)
        verbose: Record debug messages in the file
        working_dir: Project directory used for the default location

    Returns:
        Path of the log file in use

    Note:
        Calling again with another target swaps the file handler, so each CLI
        invocation logs into the project it operates on. Falls back to
        /tmp/skiff.log when the project directory is not writable.
    """
    global _file_handler

    target = Path(log_file) if log_file else default_log_file(working_dir)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        target = FALLBACK_LOG_FILE

    root_logger = logging.getLogger(ROOT_LOGGER)
    level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(level)

    if _file_handler is not None:
        if _file_handler.baseFilename == os.path.abspath(target):
            _file_handler.setLevel(level)
            return target
        root_logger.removeHandler(_file_handler)
        _file_handler.close()

    handler = logging.FileHandler(target)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)
    _file_handler = handler

    root_logger.debug(f"Logging to {target}")
    return target


def get_logger(name: str) -> logging.Logger:
    """Module logger with a rich console handler.

    Records propagate to the skiff namespace logger, which owns the file
    handler once setup_file_logging() has run.
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

    return logger
