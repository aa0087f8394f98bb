"""
Error types and error logging utilities for svgshelf.

Storage and worker failures are recovered inside the library; parse,
not-found and host errors propagate to callers. The CLI logs full stack
traces for debugging while showing clean messages to users.
"""

import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class SvgShelfError(Exception):
    """Base class for all svgshelf errors."""


class ParseError(SvgShelfError):
    """Malformed archive, archive entry, or metadata artifact."""


class NotFoundError(SvgShelfError):
    """A named archive entry is absent."""


class StorageUnavailable(SvgShelfError):
    """The persistent cache cannot be read or written.

    Never escapes the cache layer: writes become best-effort, reads miss.
    """


class WorkerUnavailable(SvgShelfError):
    """The decompression worker could not be started or stopped answering.

    Recovered by falling back to in-process decompression.
    """


class HostError(SvgShelfError):
    """Base class for errors reported by the host document."""


class HostSelectionError(HostError):
    """The host rejected the mutation because the selection is invalid.

    Retried once after forcing the target context's selection.
    """


class HostFatalError(HostError):
    """Any other host failure. Not retried."""


ERROR_LOG_NAME = "svgshelf-errors.log"


def error_log_path(home: Optional[Path] = None) -> Path:
    """Error log inside ``home``, else SVGSHELF_HOME, else ~/.svgshelf."""
    if home is None:
        home = Path(os.environ.get("SVGSHELF_HOME") or Path.home() / ".svgshelf")
    return Path(home) / ERROR_LOG_NAME


def log_exception(exc: Exception, context: str = "", home: Optional[Path] = None) -> Path:
    """
    Append a traceback for a failed command to the library's error log.

    The header line carries the command and the error class, so the log
    can be searched by failure kind (``ParseError``, ``HostFatalError``...).

    Returns:
        Path to the error log file, whether or not the write succeeded
    """
    log_path = error_log_path(home)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    header = f"[{stamp}] {context or '-'}: {type(exc).__name__}: {exc}"
    body = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(f"{header}\n{body}\n")
    except OSError as e:
        logger.warning("Could not write error log %s: %s", log_path, e)
    return log_path
