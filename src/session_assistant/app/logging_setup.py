from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from session_assistant.config.settings import LoggingSettings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(
    settings: LoggingSettings, *, log_dir: Path | None = None
) -> RotatingFileHandler | None:
    """Install the console handler and, with ``log_dir``, a rotating file handler."""
    logging.basicConfig(level=settings.level.upper(), format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    root = logging.getLogger()
    root.setLevel(settings.level.upper())

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / settings.file_name
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_file.absolute():
            return handler

    handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)
    return handler
