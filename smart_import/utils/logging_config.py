"""
Logging setup for the Flask app: console and rotating file handlers, JSON or text.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

from flask import Flask

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys() | {"message", "asctime", "taskName"}
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line; keys passed through ``extra=`` are included verbatim."""

    def __init__(self, *, app_name: str | None = None, app_version: str | None = None) -> None:
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version
        try:
            self.hostname = socket.gethostname()
        except OSError:
            self.hostname = "unknown"

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "hostname": self.hostname,
        }
        if self.app_name:
            entry["app"] = self.app_name
        if self.app_version:
            entry["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def _build_formatter(app: Flask) -> logging.Formatter:
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JSONFormatter(app_name=app.config.get("APP_NAME"), app_version=app.config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(app: Flask) -> None:
    """
    Attach handlers to ``app.logger`` according to the ``LOG_*`` settings.

    Safe to call more than once; handlers installed by a previous call are replaced.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)

    for handler in list(app.logger.handlers):
        if getattr(handler, "_smart_import_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    formatter = _build_formatter(app)
    handlers: list[logging.Handler] = []

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler(sys.stdout))

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, app.config.get("LOG_FILE_NAME", "smart_import.log")),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._smart_import_handler = True  # type: ignore[attr-defined]
        app.logger.addHandler(handler)

    app.logger.debug(
        "Logging configured",
        extra={"log_format": app.config.get("LOG_FORMAT"), "log_handlers": [type(h).__name__ for h in handlers]},
    )
