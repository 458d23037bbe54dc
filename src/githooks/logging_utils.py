"""Logging helpers for githooks."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME = "githooks.log"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``pid`` tells concurrent pushes apart in a shared log."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds"),
            "pid": record.process,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logger(name: str = "githooks", log_dir: Path | None = None, level: int = logging.WARNING) -> logging.Logger:
    """Text records on stderr and, with ``log_dir``, JSON lines in githooks.log.

    Hooks share stderr with the fault report, so the stream handler stays
    quiet unless ``level`` is lowered. The file handler always records INFO.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(min(level, logging.INFO) if log_dir else level)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")
        file_handler.setLevel(min(level, logging.INFO))
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    return logger
