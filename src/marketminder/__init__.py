"""MarketMinder: transaction ledger engine for small-merchant bookkeeping.

Importing the package configures the shared ``marketminder`` logger used by
every module. The ledger log file under ``.logs/`` is only created once
something is logged to it. Set ``MARKETMINDER_LOG_LEVEL`` to override the
default level.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "1.0.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "marketminder.log"
LOG_LEVEL_ENV = "MARKETMINDER_LOG_LEVEL"


def _resolve_level() -> int:
    raw = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


class LazyRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that creates its folder and file on the first record."""

    def __init__(self, filename, **kwargs) -> None:
        kwargs["delay"] = True
        super().__init__(filename, **kwargs)

    def _open(self):
        Path(self.baseFilename).parent.mkdir(parents=True, exist_ok=True)
        return super()._open()


def _configure_logging() -> logging.Logger:
    """Attach a rotating ledger log file and a stderr handler to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level()
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        ledger_handler = LazyRotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        ledger_handler.setLevel(level)
        ledger_handler.setFormatter(formatter)
        logger.addHandler(ledger_handler)
    except (OSError, PermissionError) as exc:
        print(
            f"Warning: ledger log file unavailable at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    return logger


log = _configure_logging()
log.debug("MarketMinder %s logger ready (level=%s)", __version__, logging.getLevelName(log.level))
