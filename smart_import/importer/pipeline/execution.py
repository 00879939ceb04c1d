"""
Execution engine: inserts approved rows into the domain's target table.

All inserts for a session share one database transaction. Each row runs inside
its own SAVEPOINT so a constraint violation only undoes that row; the failure is
written to the audit ledger and the loop moves on. Anything that breaks the
outer transaction rolls back every insert and audit entry and leaves the
session FAILED with the error preserved.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from datetime import time as time_of_day
from typing import Any, Mapping

from flask import current_app, has_app_context
from sqlalchemy import MetaData, Table, insert
from sqlalchemy.exc import CompileError, DBAPIError, StatementError
from sqlalchemy.orm import Session

from smart_import.importer.errors import UnsafeIdentifierError
from smart_import.models import db
from smart_import.models.importer import AuditActionType, ImportAuditLog, ImportSession, ImportSessionStatus

from .rules import parse_date
from .state_machine import SessionOperation, SessionStateMachine
from .stores import DomainSchema
from .validation import map_row

IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
TENANT_COLUMN = "organization_id"

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def ensure_safe_identifier(kind: str, name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise UnsafeIdentifierError(kind, str(name))
    return name


@dataclass
class ExecutionSummary:
    """Counters for one execution; written to ``execution_result`` once."""

    total: int
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    source_rows: int | None = None
    error: str | None = None
    row_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def final_status(self) -> ImportSessionStatus:
        if self.error is not None or self.successful == 0:
            return ImportSessionStatus.FAILED
        if self.failed > 0:
            return ImportSessionStatus.COMPLETED_WITH_ERRORS
        return ImportSessionStatus.COMPLETED

    @property
    def message(self) -> str:
        if self.error is not None:
            return f"Import execution failed: {self.error}"
        status = self.final_status
        if status is ImportSessionStatus.COMPLETED:
            return (
                f"Import completed successfully. {self.successful} rows imported. "
                f"Duration: {self.duration_ms}ms."
            )
        if status is ImportSessionStatus.COMPLETED_WITH_ERRORS:
            return (
                f"Import completed with errors. {self.successful} successful, {self.failed} failed, "
                f"{self.skipped} skipped. Duration: {self.duration_ms}ms."
            )
        if self.failed:
            return f"Import failed. All {self.failed} rows failed. Duration: {self.duration_ms}ms."
        return f"Import failed. No rows were imported ({self.skipped} skipped). Duration: {self.duration_ms}ms."

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
        }
        if self.source_rows is not None:
            payload["source_rows"] = self.source_rows
        if self.error is not None:
            payload["error"] = self.error
        return payload


class ExecutionEngine:
    """Run an APPROVED session to a terminal status."""

    def __init__(self, session: Session | None = None, state_machine: SessionStateMachine | None = None) -> None:
        self.session: Session = session or db.session
        self.state_machine = state_machine or SessionStateMachine(self.session)

    def execute(
        self,
        import_session: ImportSession,
        *,
        schema: DomainSchema | None,
        executed_by: int | None = None,
    ) -> ImportSession:
        self.state_machine.transition(
            import_session,
            SessionOperation.EXECUTE,
            ImportSessionStatus.EXECUTING,
            started_at=datetime.now(timezone.utc),
            message="Executing import...",
        )

        rows = import_session.sample_rows
        source_rows = (import_session.file_metadata or {}).get("rows")
        summary = ExecutionSummary(total=len(rows), source_rows=source_rows)
        started = time.perf_counter()
        table_name = schema.table_name if schema else import_session.domain

        try:
            self._run_rows(
                import_session,
                rows,
                table_name=table_name,
                schema=schema,
                executed_by=executed_by,
                summary=summary,
            )
        except Exception as exc:
            self.session.rollback()
            summary = ExecutionSummary(
                total=len(rows),
                failed=len(rows),
                source_rows=source_rows,
                duration_ms=_elapsed_ms(started),
                error=str(exc),
            )
            if has_app_context():
                current_app.logger.exception(
                    "Import session %s execution failed",
                    import_session.id,
                    extra={"import_session_id": import_session.id, "import_table": table_name},
                )
            return self._finish(import_session, summary)

        summary.duration_ms = _elapsed_ms(started)
        return self._finish(import_session, summary)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _run_rows(
        self,
        import_session: ImportSession,
        rows: list[Mapping[str, Any]],
        *,
        table_name: str,
        schema: DomainSchema | None,
        executed_by: int | None,
        summary: ExecutionSummary,
    ) -> None:
        column_mapping: Mapping[str, str] = import_session.column_mapping or {}
        ensure_safe_identifier("table", table_name)
        for target in column_mapping.values():
            ensure_safe_identifier("column", target)

        table = Table(table_name, MetaData(), autoload_with=self.session.connection())
        specs = {spec.name: spec for spec in schema.fields} if schema else {}
        invalid_rows = set((import_session.validation_report or {}).get("invalid_row_numbers") or ())
        organization_id = import_session.organization_id

        if _sample_is_partial(summary) and has_app_context():
            current_app.logger.warning(
                "Import session %s executes %s sampled rows out of %s in the source file",
                import_session.id,
                summary.total,
                summary.source_rows,
                extra={"import_session_id": import_session.id},
            )

        for index, row in enumerate(rows):
            row_number = index + 1
            record = map_row(row, column_mapping)

            if row_number in invalid_rows:
                summary.skipped += 1
                self._append_audit(
                    import_session,
                    action=AuditActionType.SKIP,
                    table_name=table_name,
                    row_number=row_number,
                    after_state=record,
                    executed_by=executed_by,
                    error_message="Row failed validation and was skipped.",
                )
                continue

            try:
                values = _coerce_record(record, specs)
                values[TENANT_COLUMN] = organization_id
                with self.session.begin_nested():
                    result = self.session.execute(insert(table).values(**values))
                primary_key = result.inserted_primary_key
                record_id = str(primary_key[0]) if primary_key and primary_key[0] is not None else None
            except (StatementError, CompileError, ValueError) as exc:
                if isinstance(exc, DBAPIError) and exc.connection_invalidated:
                    raise
                summary.failed += 1
                error_message = _describe_error(exc)
                summary.row_errors.append({"row": row_number, "message": error_message})
                self._append_audit(
                    import_session,
                    action=AuditActionType.INSERT,
                    table_name=table_name,
                    row_number=row_number,
                    after_state=record,
                    executed_by=executed_by,
                    success=False,
                    error_message=error_message,
                )
                if has_app_context():
                    current_app.logger.warning(
                        "Import session %s row %s failed: %s",
                        import_session.id,
                        row_number,
                        error_message,
                        extra={"import_session_id": import_session.id, "import_row_number": row_number},
                    )
                continue

            summary.successful += 1
            self._append_audit(
                import_session,
                action=AuditActionType.INSERT,
                table_name=table_name,
                row_number=row_number,
                after_state=_jsonable(values),
                executed_by=executed_by,
                record_id=record_id,
            )

    def _append_audit(
        self,
        import_session: ImportSession,
        *,
        action: AuditActionType,
        table_name: str,
        row_number: int,
        after_state: Mapping[str, Any] | None,
        executed_by: int | None,
        success: bool = True,
        error_message: str | None = None,
        record_id: str | None = None,
    ) -> ImportAuditLog:
        entry = ImportAuditLog(
            session_id=import_session.id,
            organization_id=import_session.organization_id,
            action_type=action,
            table_name=table_name,
            record_id=record_id,
            row_number=row_number,
            before_state=None,
            after_state=dict(after_state) if after_state is not None else None,
            executed_at=datetime.now(timezone.utc),
            executed_by_user_id=executed_by,
            success=success,
            error_message=error_message,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def _finish(self, import_session: ImportSession, summary: ExecutionSummary) -> ImportSession:
        self.state_machine.transition(
            import_session,
            SessionOperation.FINISH_EXECUTE,
            summary.final_status,
            execution_result=summary.as_dict(),
            completed_at=datetime.now(timezone.utc),
            message=summary.message,
        )
        if has_app_context():
            current_app.logger.info(
                "Import session %s execution finished",
                import_session.id,
                extra={
                    "import_session_id": import_session.id,
                    "import_status": import_session.status.value,
                    "import_rows_successful": summary.successful,
                    "import_rows_failed": summary.failed,
                    "import_rows_skipped": summary.skipped,
                    "import_duration_ms": summary.duration_ms,
                },
            )
        return import_session


def _sample_is_partial(summary: ExecutionSummary) -> bool:
    return summary.source_rows is not None and summary.source_rows > summary.total


def _coerce_record(record: Mapping[str, Any], specs: Mapping[str, Any]) -> dict[str, Any]:
    """Apply field defaults and primitive types declared by the schema."""

    values: dict[str, Any] = {}
    for name, raw in record.items():
        spec = specs.get(name)
        value = raw.strip() if isinstance(raw, str) else raw
        if value is None or value == "":
            values[name] = spec.default if spec is not None else None
            continue
        if spec is None:
            values[name] = value
            continue
        values[name] = _coerce_value(spec.field_type, value, name)
    return values


def _coerce_value(field_type: str, value: Any, name: str) -> Any:
    if field_type == "integer":
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f'Field "{name}" expects an integer, received {value!r}') from None
        if not number.is_integer():
            raise ValueError(f'Field "{name}" expects an integer, received {value!r}')
        return int(number)
    if field_type == "number":
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f'Field "{name}" expects a number, received {value!r}') from None
    if field_type == "boolean":
        if isinstance(value, bool):
            return value
        token = str(value).strip().lower()
        if token in _TRUE_VALUES:
            return True
        if token in _FALSE_VALUES:
            return False
        raise ValueError(f'Field "{name}" expects a boolean, received {value!r}')
    if field_type == "date":
        return _coerce_date(value, name)
    return value


def _coerce_date(value: Any, name: str) -> date | datetime:
    # drivers such as pysqlite only bind date objects to DATE columns
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value).strip())
    if parsed is None:
        raise ValueError(f'Field "{name}" expects a date, received {value!r}')
    if parsed.tzinfo is None and parsed.time() == time_of_day.min:
        return parsed.date()
    return parsed


def _describe_error(exc: Exception) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


def _jsonable(values: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: value if value is None or isinstance(value, (str, int, float, bool)) else str(value)
        for key, value in values.items()
    }


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))
