# src/config/logging_config.py

"""Per-run log files for price refresh batches.

Every batch writes ``logs/run_<YYYYmmdd_HHMMSS>.log`` at DEBUG, with the
worker thread name on each line since offers are refreshed on threads
and their lines interleave.  Only warnings and errors reach stderr
unless the caller asks for verbose output.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings

LOGGER_NAME = "price_refresh"

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)
_STDERR_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _current_log_file(logger: logging.Logger) -> Path | None:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def _handler(
    handler: logging.Handler, level: int, fmt: str,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=_DATE_FORMAT))
    return handler


def setup_logging(logs_dir: Path | None = None, verbose: bool = False) -> Path:
    """Attach the run log file and the stderr handler to ``price_refresh``.

    Calling it again keeps the handlers of the first call and returns
    the log file already in use.

    Args:
        logs_dir: Where the run log goes.  Defaults to
            :attr:`Settings.LOGS_DIR`.
        verbose: Show INFO records (per-offer outcomes) on stderr too.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    existing = _current_log_file(logger)
    if existing is not None:
        return existing

    target_dir: Path = logs_dir or Settings.LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    log_file = target_dir / f"run_{datetime.now():%Y%m%d_%H%M%S}.log"

    logger.addHandler(_handler(
        logging.FileHandler(log_file, encoding="utf-8"),
        logging.DEBUG,
        _FILE_FORMAT,
    ))
    logger.addHandler(_handler(
        logging.StreamHandler(sys.stderr),
        logging.INFO if verbose else logging.WARNING,
        _STDERR_FORMAT,
    ))

    logger.debug("Run log opened at %s", log_file)
    return log_file
