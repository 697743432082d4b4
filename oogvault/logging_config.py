"""
Logging setup for oogvault.

- configure_quiet_mode(): default for the CLI, silences library chatter
- enable_debug_mode(): --verbose / OOGVAULT_VERBOSE=1, everything to stderr
- configure_ops_log() / detach_ops_log(): the per-store vault-ops.log
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "oogvault"

OPS_LOG_FILENAME = "vault-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Libraries whose INFO/DEBUG output is noise for vault users
_LIBRARY_LOGGERS = ("aiosqlite", "mcp", "httpx", "anyio")


def configure_quiet_mode(quiet: bool = True):
    """
    Silence warnings and library loggers below ERROR.

    Args:
        quiet: If False, restore default warnings and library levels.
    """
    warnings.filterwarnings("ignore" if quiet else "default")
    level = logging.ERROR if quiet else logging.NOTSET
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root_logger):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root_logger.addHandler(handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)
    # aiosqlite logs every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the persistent operations log of a store.

    Saves, deletes and nugget extraction are recorded at INFO in
    {store_path}/vault-ops.log whatever the verbosity. Returns the handler
    for detach_ops_log().
    """
    log_path = Path(store_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    vault_logger = logging.getLogger(PACKAGE_LOGGER)
    vault_logger.addHandler(handler)
    # Quiet mode must not hide INFO from the ops log
    if vault_logger.level == logging.NOTSET or vault_logger.level > logging.INFO:
        vault_logger.setLevel(logging.INFO)

    return handler


def detach_ops_log(handler: Optional[logging.Handler]) -> None:
    """Remove and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
