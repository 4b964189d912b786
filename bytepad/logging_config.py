"""
Logging configuration for bytepad.

Keeps library chatter off stderr by default. Stdout is never used:
it carries the MCP stdio protocol.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Libraries that log every HTTP request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "mcp", "mcp.server.lowlevel.server")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("bytepad").setLevel(logging.DEBUG)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(data_dir):
    """Configure a persistent operations log in the data directory.

    Writes to {data_dir}/bytepad-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(data_dir) / "bytepad-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    bytepad_logger = logging.getLogger("bytepad")
    bytepad_logger.addHandler(handler)
    # Ensure bytepad logger allows INFO through even in quiet mode
    if bytepad_logger.level == logging.NOTSET or bytepad_logger.level > logging.INFO:
        bytepad_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger("bytepad").removeHandler(handler)
    handler.close()
