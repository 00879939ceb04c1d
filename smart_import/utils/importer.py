"""
Config lookups shared by the import engine, CLI and worker.
"""

from __future__ import annotations

from typing import Any, Mapping, Tuple

from flask import current_app, has_app_context

DEFAULT_FILE_TYPES: Tuple[str, ...] = ("csv", "xlsx", "json")


def _config(app=None) -> Mapping[str, Any]:
    if app is None and has_app_context():
        app = current_app
    return app.config if app is not None else {}


def is_importer_enabled(app=None) -> bool:
    return bool(_config(app).get("IMPORTER_ENABLED", False))


def is_worker_enabled(app=None) -> bool:
    """True when approved sessions are executed by the Celery worker instead of inline."""
    return bool(_config(app).get("IMPORTER_WORKER_ENABLED", False))


def get_importer_setting(key: str, default: Any = None, app=None) -> Any:
    """Read ``key`` from the app config; ``None`` and a missing app context both yield ``default``."""
    value = _config(app).get(key)
    return default if value is None else value


def get_allowed_file_types(app=None) -> Tuple[str, ...]:
    return tuple(_config(app).get("IMPORTER_ALLOWED_FILE_TYPES") or DEFAULT_FILE_TYPES)
