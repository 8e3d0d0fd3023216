"""Logging setup: plain text by default, one JSON object per line when structured."""

import json
import logging
import sys
from datetime import datetime, timezone

from dbquery.core.config import settings


class StructuredFormatter(logging.Formatter):
    """JSON formatter; ``extra=`` fields passed to the logger are merged in."""

    _RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key, value in vars(record).items():
            if key not in self._RESERVED and not key.startswith("_"):
                log_data[key] = value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def setup_logging(level: str | None = None, structured: bool | None = None) -> None:
    """Configure the ``dbquery`` logger hierarchy.

    Defaults come from ``settings.LOG_LEVEL`` and ``settings.LOG_STRUCTURED``.
    Only the package logger is touched so host applications keep their own
    root configuration.
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    use_json = settings.LOG_STRUCTURED if structured is None else structured

    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger = logging.getLogger("dbquery")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False
