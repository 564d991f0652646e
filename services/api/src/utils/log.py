"""
Logging setup for the API service.

- development: colored, human-readable lines
- staging/production: one JSON object per line for log aggregation
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

PRODUCTION_ENVIRONMENTS = ("production", "prod", "staging")


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "ENDC": "\033[0m",
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module_name = record.name if record.name != "__main__" else "main"
        line = (
            f"[{timestamp}] {level_color}{record.levelname:8s}{self.COLORS['ENDC']} "
            f"[{module_name}] {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            "environment": os.getenv("ENVIRONMENT", "unknown"),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def init(level: str = "INFO", environment: Optional[str] = None) -> None:
    """Configure the root logger once for the process.

    Library loggers (clients.*, models.*) propagate here, so operations keep
    using plain ``logging.getLogger``.
    """
    environment = (environment or os.getenv("ENVIRONMENT", "development")).lower()
    handler = logging.StreamHandler(sys.stdout)
    if environment in PRODUCTION_ENVIRONMENTS:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # The Couchbase SDK and APScheduler are chatty at INFO.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
