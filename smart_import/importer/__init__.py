"""
Import engine package.

``init_importer`` mounts the ``flask importer`` command group and, when the
feature flag is on, builds the Celery app used for background execution. The
outcome is recorded in ``app.extensions['importer']``.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from smart_import.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .errors import ImportConfigurationError, ImportEngineError, SessionStateError, UnsafeIdentifierError
from .pipeline import AuditFilters, ImportSessionService, PageResult, SessionFilters

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "get_celery_app",
    "AuditFilters",
    "ImportConfigurationError",
    "ImportEngineError",
    "ImportSessionService",
    "PageResult",
    "SessionFilters",
    "SessionStateError",
    "UnsafeIdentifierError",
]


def _extension_state(app: Flask) -> dict[str, Any]:
    if IMPORTER_EXTENSION_KEY not in app.extensions:
        app.extensions[IMPORTER_EXTENSION_KEY] = {"enabled": False, "worker_enabled": False, "celery_app": None}
    return app.extensions[IMPORTER_EXTENSION_KEY]


def _mount_command_group(app: Flask, enabled: bool) -> None:
    # init_importer may run more than once against the same app in tests
    app.cli.commands.pop(importer_cli.name, None)
    app.cli.add_command(importer_cli if enabled else get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    state = _extension_state(app)
    state["enabled"] = is_importer_enabled(app)
    state["worker_enabled"] = is_worker_enabled(app)
    _mount_command_group(app, state["enabled"])

    if not state["enabled"]:
        app.logger.info("Import engine disabled (IMPORTER_ENABLED=false); CLI replaced with stub group.")
        return

    ensure_celery_app(app, state)
    app.logger.info(
        "Import engine ready",
        extra={"import_worker_enabled": state["worker_enabled"]},
    )
