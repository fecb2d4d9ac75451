"""Logging setup for TexBrew runs.

Console output always goes to stderr. A run that writes outputs also keeps
a rotating ``texbrew.log`` next to them (see ``cli.main``).
"""

import logging
import logging.handlers
import os
import threading
from typing import Optional

logger = logging.getLogger("texture_pipeline")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_MAX_BYTES = 5 * 1024 * 1024
_LOG_BACKUP_COUNT = 2
_lock = threading.Lock()


def resolve_level(level) -> int:
    """Map a level name (or number) to a logging level; unknown names give INFO."""
    if isinstance(level, int) and not isinstance(level, bool):
        return level
    numeric = logging.getLevelName(str(level).strip().upper())
    if isinstance(numeric, int):
        return numeric
    logger.warning("Unknown log level %r; using INFO", level)
    return logging.INFO


def _file_handler(log_file: str) -> logging.Handler:
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _has_file_handler(target: logging.Logger, log_file: str) -> bool:
    wanted = os.path.abspath(log_file)
    return any(
        getattr(h, "baseFilename", None) == wanted for h in target.handlers
    )


def setup_logging(level="INFO", log_file: Optional[str] = None, force: bool = False):
    """Configure the ``texture_pipeline`` loggers.

    When the root logger has no handlers (or *force* is set) TexBrew owns
    logging and configures the root. Otherwise it is running inside a host
    application: only the ``texture_pipeline`` logger is touched and the
    log file is attached there, at most once per path.
    """
    numeric = resolve_level(level)
    with _lock:
        root = logging.getLogger()
        if force or not root.handlers:
            handlers = [logging.StreamHandler()]
            if log_file:
                handlers.append(_file_handler(log_file))
            logging.basicConfig(
                level=numeric, format=LOG_FORMAT, handlers=handlers, force=force,
            )
            logger.setLevel(numeric)
            return

        logger.setLevel(numeric)
        if log_file and not _has_file_handler(logger, log_file):
            logger.addHandler(_file_handler(log_file))
            logger.debug("Logging to %s", log_file)
