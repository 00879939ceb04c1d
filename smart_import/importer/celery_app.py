"""
Celery wiring for the import worker.

Approved sessions are handed to the ``imports`` queue when
``IMPORTER_WORKER_ENABLED`` is set. A deployment without a broker falls back to
a SQLite transport stored in the Flask instance folder.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
TASK_MODULES = ("smart_import.importer.tasks",)

logger = logging.getLogger(__name__)


def _transport_file(app: Flask) -> Path:
    instance_dir = Path(app.instance_path)
    location = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not location.is_absolute():
        location = instance_dir / location
    location.parent.mkdir(parents=True, exist_ok=True)
    return location


def resolve_connection_urls(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)`` for the worker.

    Either value missing from config is replaced by the SQLite transport so
    a single-process deployment can still queue executions.
    """

    broker = app.config.get("CELERY_BROKER_URL")
    backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker and backend):
        sqlite_file = _transport_file(app).as_posix()
        broker = broker or "sqla+sqlite:///" + sqlite_file
        backend = backend or "db+sqlite:///" + sqlite_file
    return broker, backend


def _celery_settings(app: Flask) -> dict[str, Any]:
    hard_limit = app.config.get("IMPORTER_TASK_TIME_LIMIT", 900)
    settings: dict[str, Any] = {
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_default_exchange": DEFAULT_QUEUE_NAME,
        "task_default_routing_key": DEFAULT_QUEUE_NAME,
        # one session per worker slot; a crashed worker must not lose the ack
        "worker_prefetch_multiplier": 1,
        "task_acks_late": True,
        "task_track_started": True,
        "task_time_limit": hard_limit,
        "task_soft_time_limit": app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", int(hard_limit * 0.8)),
        "broker_connection_retry_on_startup": True,
        "worker_hijack_root_logger": False,
    }
    settings.update(_config_overrides(app))
    return settings


def _config_overrides(app: Flask) -> dict[str, Any]:
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring CELERY_CONFIG: value is not valid JSON", exc_info=True)
            return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring CELERY_CONFIG: expected an object, got %s", type(raw).__name__)
        return {}
    return dict(raw)


def _bind_app_context(celery_app: Celery, app: Flask) -> None:
    base = celery_app.Task

    class AppContextTask(base):  # type: ignore[misc, valid-type]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = AppContextTask  # type: ignore[assignment]


def create_celery_app(app: Flask) -> Celery:
    broker, backend = resolve_connection_urls(app)
    celery_app = Celery(app.import_name, broker=broker, backend=backend, include=TASK_MODULES)
    celery_app.conf.update(_celery_settings(app))
    _bind_app_context(celery_app, app)

    if not app.config.get("SQLALCHEMY_ECHO"):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger.info(
        "Import worker configured",
        extra={
            "celery_broker": broker,
            "celery_backend": backend,
            "worker_enabled": bool(app.config.get("IMPORTER_WORKER_ENABLED")),
        },
    )
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Build the Celery app on first use and keep it on the extension state."""

    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    state = app.extensions.get("importer")
    if not state:
        return None
    if state.get("celery_app") is None and not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)
