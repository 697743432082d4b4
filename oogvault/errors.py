"""
Error log for the oogvault CLI.

Unexpected exceptions are appended with their traceback to
vault-errors.log in the store directory; the user sees one line.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path

from .config import get_default_store_path

ERROR_LOG_FILENAME = "vault-errors.log"


def error_log_path() -> Path:
    return get_default_store_path() / ERROR_LOG_FILENAME


def _format_entry(exc: BaseException, context: str) -> str:
    header = f"[{datetime.now(timezone.utc).isoformat()}]"
    if context:
        header += f" {context}"
    header += f": {type(exc).__name__}: {exc}"
    body = "".join(traceback.format_exception(exc))
    return f"\n{'=' * 60}\n{header}\n{body}"


def log_exception(exc: BaseException, context: str = "") -> Path:
    """
    Append an exception with its traceback to the error log.

    The file is created owner-only; failure to write it is ignored.

    Args:
        exc: The exception that occurred
        context: What was running (e.g. the CLI command)

    Returns:
        Path to the error log file
    """
    log_path = error_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(_format_entry(exc, context))
    except OSError:
        pass  # no error log is better than a second crash
    return log_path
