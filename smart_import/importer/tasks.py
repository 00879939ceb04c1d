"""
Celery tasks run by the import worker.

Both tasks execute inside the Flask app context supplied by the worker's task
base class, so the session service can use ``db.session`` directly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from smart_import.importer.pipeline import ImportSessionService
from smart_import.models.base import db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask importer worker ping``."""
    return {
        "status": "ok",
        "worker_hostname": self.request.hostname,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@shared_task(name="importer.sessions.execute", bind=True)
def execute_import_session(self, *, session_id: int, executed_by: int | None = None) -> dict[str, Any]:
    log_extra = {"import_session_id": session_id, "import_task_id": self.request.id}
    try:
        import_session = ImportSessionService().execute_session(session_id, executed_by=executed_by)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Import session execution task failed", extra=log_extra)
        raise

    counts = import_session.execution_result or {}
    log_extra.update(
        import_status=import_session.status.value,
        **{f"import_rows_{key}": counts.get(key) for key in ("successful", "failed", "skipped")},
    )
    current_app.logger.info("Import session execution task finished", extra=log_extra)
    return {
        "session_id": session_id,
        "status": import_session.status.value,
        "execution_result": counts,
    }
