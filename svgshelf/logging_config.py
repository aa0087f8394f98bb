"""
Logging configuration for svgshelf.

Quiet by default: the CLI only shows warnings. ``--verbose`` turns on
debug output for the library, including the per-entry archive and
per-frame render messages that quiet mode holds back. The operations log
(``svgshelf-ops.log``) records imports, fallbacks and insertions at INFO
regardless of the console level.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_NAME = "svgshelf-ops.log"

# Third-party loggers that report every request at INFO
_THIRD_PARTY = ("httpx", "httpcore", "multiprocessing")

# Our modules that log once per archive entry or per frame at DEBUG
_HIGH_VOLUME = ("svgshelf.archive", "svgshelf.render")

_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_quiet_mode(quiet: bool = True):
    """
    Hold back chatty loggers.

    Args:
        quiet: If False, leave every level untouched.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _THIRD_PARTY:
        logging.getLogger(name).setLevel(logging.WARNING)
    # INFO still reaches the ops log; per-entry DEBUG does not
    for name in _HIGH_VOLUME:
        logging.getLogger(name).setLevel(logging.INFO)
    logging.getLogger("svgshelf").setLevel(logging.WARNING)


def enable_debug_mode():
    """Send svgshelf debug output, high-volume modules included, to stderr."""
    warnings.filterwarnings("default")

    shelf_logger = logging.getLogger("svgshelf")
    shelf_logger.setLevel(logging.DEBUG)
    for name in _HIGH_VOLUME:
        logging.getLogger(name).setLevel(logging.NOTSET)
    logging.getLogger("httpx").setLevel(logging.INFO)

    if not any(getattr(h, "_svgshelf_console", False) for h in shelf_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        handler._svgshelf_console = True  # type: ignore[attr-defined]
        shelf_logger.addHandler(handler)


def configure_ops_log(home):
    """Attach the rotating operations log for a library home.

    1MB per file, 3 backups. Returns the handler so callers can detach it.
    """
    log_path = Path(home) / OPS_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(str(log_path), maxBytes=1_000_000, backupCount=3)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    shelf_logger = logging.getLogger("svgshelf")
    shelf_logger.addHandler(handler)
    if shelf_logger.level == logging.NOTSET or shelf_logger.level > logging.INFO:
        shelf_logger.setLevel(logging.INFO)
    return handler
