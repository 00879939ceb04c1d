"""
Import session service: the operations exposed to CLI, worker and callers.

Each public method loads the session, asks the state machine to move it, does
the stage's work (classification, validation, approval decision, execution) and
returns the updated ``ImportSession``. Listing helpers mirror the filtering and
pagination conventions used across the importer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Iterable, Mapping

from flask import current_app, has_app_context
from sqlalchemy import and_
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from smart_import.importer.adapters import (
    FileParseError,
    ParsedFile,
    UnsupportedFileTypeError,
    detect_file_type,
    parse,
)
from smart_import.importer.contracts import FieldDefinitionError
from smart_import.importer.errors import ImportConfigurationError
from smart_import.models import db
from smart_import.models.importer import (
    ApprovalStatus,
    AuditActionType,
    ImportAuditLog,
    ImportDomain,
    ImportSession,
    ImportSessionStatus,
    SchemaDefinition,
    ValidationRule,
)
from smart_import.utils.importer import get_allowed_file_types, get_importer_setting, is_worker_enabled

from .approval import DEFAULT_AUTO_APPROVE_THRESHOLD, decide_approval, format_percent
from .classifier import (
    DEFAULT_DETECTION_THRESHOLD,
    ClassificationResult,
    apply_manual_mapping,
    detect_domain,
    match_columns,
    validate_column_mapping,
)
from .execution import ExecutionEngine
from .rules import RuleDefinitionError, compile_rule, hint_rules
from .state_machine import SessionOperation, SessionStateMachine, ensure_allowed
from .stores import RuleStore, SchemaCatalog
from .validation import build_action_plan, validate_rows

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SAMPLE_ROWS = 5

_CLEARED_CLASSIFICATION = {
    "classification_result": None,
    "classification_confidence": None,
    "column_mapping": None,
    "unmapped_columns": None,
}


@dataclass(frozen=True)
class SessionFilters:
    """Canonical filter options for listing import sessions."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    domains: tuple[str, ...] = field(default_factory=tuple)
    statuses: tuple[ImportSessionStatus, ...] = field(default_factory=tuple)
    approval_statuses: tuple[ApprovalStatus, ...] = field(default_factory=tuple)
    date_from: datetime | None = None
    date_to: datetime | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        domains: Iterable[str] | str | None = None,
        statuses: Iterable[str] | str | None = None,
        approval_statuses: Iterable[str] | str | None = None,
        date_from: str | datetime | None = None,
        date_to: str | datetime | None = None,
    ) -> "SessionFilters":
        """
        Coerce mixed user input into a validated ``SessionFilters`` instance.
        """

        resolved_domains: list[str] = []
        for value in _as_iterable(domains):
            try:
                resolved_domains.append(ImportDomain(value.strip().lower()).value)
            except ValueError:
                raise ValueError(f"Unsupported domain filter '{value}'.") from None

        resolved_from = _coerce_datetime(date_from)
        resolved_to = _coerce_datetime(date_to, end_of_day=True)
        if resolved_from and resolved_to and resolved_from > resolved_to:
            raise ValueError("date_from must be before date_to.")

        return cls(
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=_coerce_page_size(page_size),
            domains=tuple(sorted(set(resolved_domains))),
            statuses=tuple(_coerce_enum(ImportSessionStatus, value, "status") for value in _as_iterable(statuses)),
            approval_statuses=tuple(
                _coerce_enum(ApprovalStatus, value, "approval status") for value in _as_iterable(approval_statuses)
            ),
            date_from=resolved_from,
            date_to=resolved_to,
        )


@dataclass(frozen=True)
class AuditFilters:
    """Filter options for a session's audit ledger."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    action_types: tuple[AuditActionType, ...] = field(default_factory=tuple)
    table_name: str | None = None
    success: bool | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        action_types: Iterable[str] | str | None = None,
        table_name: str | None = None,
        success: str | bool | None = None,
    ) -> "AuditFilters":
        return cls(
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=_coerce_page_size(page_size),
            action_types=tuple(
                _coerce_enum(AuditActionType, value, "action type") for value in _as_iterable(action_types)
            ),
            table_name=table_name.strip() if isinstance(table_name, str) and table_name.strip() else None,
            success=_coerce_optional_bool(success),
        )


@dataclass(slots=True)
class PageResult:
    """Paginated result set."""

    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


class ImportSessionService:
    """Facade over the import pipeline stages for one database session."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        catalog: SchemaCatalog | None = None,
        rule_store: RuleStore | None = None,
    ) -> None:
        self.session: Session = session or db.session
        self.catalog = catalog or SchemaCatalog(self.session)
        self.rule_store = rule_store or RuleStore(self.session)
        self.state_machine = SessionStateMachine(self.session)

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def create_session(
        self,
        *,
        organization_id: int,
        file_name: str,
        content: bytes | None = None,
        parsed: ParsedFile | None = None,
        file_size: int | None = None,
        domain: str | None = None,
        uploaded_by: int | None = None,
        file_url: str | None = None,
        template_id: int | None = None,
    ) -> ImportSession:
        try:
            file_type = detect_file_type(file_name, get_allowed_file_types())
            if parsed is None:
                if content is None:
                    raise ImportConfigurationError("Either file content or a parsed file is required.")
                _ensure_upload_size(content)
                parsed = parse(content, file_type)
        except UnsupportedFileTypeError as exc:
            raise ImportConfigurationError(str(exc)) from exc
        except FileParseError as exc:
            raise ImportConfigurationError(f"Unable to parse {file_name}: {exc}") from exc

        if domain:
            resolved_domain = _coerce_domain(domain)
        else:
            detection = detect_domain(
                parsed.headers,
                self.catalog.list_active(organization_id=organization_id),
                threshold=float(
                    get_importer_setting("IMPORTER_DOMAIN_DETECTION_THRESHOLD", DEFAULT_DETECTION_THRESHOLD)
                ),
            )
            if detection is None:
                raise ImportConfigurationError(
                    "Could not detect the data domain from the file headers. Please specify a domain explicitly."
                )
            resolved_domain = detection.domain

        sample_size = int(get_importer_setting("IMPORTER_SAMPLE_ROWS", DEFAULT_SAMPLE_ROWS))
        import_session = ImportSession(
            organization_id=organization_id,
            domain=resolved_domain,
            status=ImportSessionStatus.UPLOADED,
            approval_status=ApprovalStatus.PENDING,
            template_id=template_id,
            file_name=file_name,
            file_size=file_size if file_size is not None else len(content or b""),
            file_type=file_type,
            file_url=file_url,
            file_metadata={
                "rows": parsed.row_count,
                "columns": parsed.column_count,
                "headers": list(parsed.headers),
                "sample_data": [dict(row) for row in parsed.rows[:sample_size]],
            },
            uploaded_by_user_id=uploaded_by,
            message="File uploaded successfully. Ready for classification.",
        )
        self.session.add(import_session)
        self.session.commit()
        self._log("Import session %s created for domain %s", import_session, resolved_domain)
        return import_session

    def classify_session(
        self,
        session_id: int,
        *,
        organization_id: int | None = None,
        override_domain: str | None = None,
        manual_mapping: Mapping[str, str] | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        ensure_allowed(import_session, SessionOperation.CLASSIFY)

        domain = _coerce_domain(override_domain) if override_domain else import_session.domain
        headers = import_session.headers
        if manual_mapping is not None:
            validate_column_mapping(headers, manual_mapping)

        self.state_machine.transition(
            import_session,
            SessionOperation.CLASSIFY,
            ImportSessionStatus.CLASSIFYING,
            domain=domain,
            message="Classification in progress...",
        )

        try:
            schema = self.catalog.get_active(domain, organization_id=import_session.organization_id)
            if manual_mapping is not None:
                result: ClassificationResult | None = apply_manual_mapping(
                    headers,
                    manual_mapping,
                    domain=domain,
                    schema_version=schema.version if schema else None,
                )
            elif schema is None:
                result = None
            else:
                result = match_columns(headers, schema)
        except Exception as exc:
            self.session.rollback()
            self.state_machine.transition(
                import_session,
                SessionOperation.FINISH_CLASSIFY,
                ImportSessionStatus.UPLOADED,
                message=f"Classification failed: {exc}",
                **_CLEARED_CLASSIFICATION,
            )
            raise

        if result is None:
            return self.state_machine.transition(
                import_session,
                SessionOperation.FINISH_CLASSIFY,
                ImportSessionStatus.UPLOADED,
                **_CLEARED_CLASSIFICATION,
                message=(
                    f"No schema definition found for domain: {domain}. Please provide manual column mapping."
                ),
            )

        return self.state_machine.transition(
            import_session,
            SessionOperation.FINISH_CLASSIFY,
            ImportSessionStatus.CLASSIFIED,
            message=(
                f"Classification completed. Domain: {domain}, confidence: {format_percent(result.confidence)}%, "
                f"{len(result.column_mapping)} columns mapped, {len(result.unmapped_columns)} unmapped."
            ),
            **_classification_changes(result),
        )

    def remap_session(
        self,
        session_id: int,
        column_mapping: Mapping[str, str],
        *,
        organization_id: int | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        ensure_allowed(import_session, SessionOperation.REMAP)
        schema = self.catalog.get_active(import_session.domain, organization_id=import_session.organization_id)
        result = apply_manual_mapping(
            import_session.headers,
            column_mapping,
            domain=import_session.domain,
            schema_version=schema.version if schema else None,
        )

        self.state_machine.transition(
            import_session,
            SessionOperation.REMAP,
            ImportSessionStatus.MAPPING,
            message="Applying column mapping...",
        )
        return self.state_machine.transition(
            import_session,
            SessionOperation.FINISH_REMAP,
            ImportSessionStatus.MAPPED,
            message=f"Column mapping updated. {len(result.column_mapping)} columns mapped.",
            **_classification_changes(result),
        )

    def validate_session(self, session_id: int, *, organization_id: int | None = None) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        self.state_machine.transition(
            import_session,
            SessionOperation.VALIDATE,
            ImportSessionStatus.VALIDATING,
            message="Validation in progress...",
        )

        try:
            rules = [
                compile_rule(rule)
                for rule in self.rule_store.active_rules(
                    import_session.domain, organization_id=import_session.organization_id
                )
            ]
            schema = self.catalog.get_active(import_session.domain, organization_id=import_session.organization_id)
            if schema is not None:
                rules.extend(hint_rules(schema.fields, rules))
        except (RuleDefinitionError, FieldDefinitionError) as exc:
            self.session.rollback()
            self.state_machine.transition(
                import_session,
                SessionOperation.FINISH_VALIDATE,
                ImportSessionStatus.VALIDATION_FAILED,
                message=f"Validation failed: {exc}",
            )
            raise ImportConfigurationError(str(exc)) from exc

        rows = import_session.sample_rows
        total_rows = (import_session.file_metadata or {}).get("rows", len(rows))
        if total_rows > len(rows) and has_app_context():
            current_app.logger.warning(
                "Import session %s validates %s sampled rows out of %s in the source file",
                import_session.id,
                len(rows),
                total_rows,
                extra={"import_session_id": import_session.id},
            )

        report = validate_rows(rows, import_session.column_mapping or {}, rules, total_rows=total_rows)
        plan = build_action_plan(report)

        if report.all_rows_invalid:
            target = ImportSessionStatus.VALIDATION_FAILED
            message = f"Validation failed. {report.invalid_rows} rows have errors."
        else:
            target = ImportSessionStatus.VALIDATED
            message = (
                f"Validation completed. {report.valid_rows} valid, {report.invalid_rows} invalid "
                f"out of {report.validated_rows} rows."
            )

        return self.state_machine.transition(
            import_session,
            SessionOperation.FINISH_VALIDATE,
            target,
            validation_report=report.as_dict(),
            action_plan=plan.as_dict(),
            message=message,
        )

    def submit_for_approval(self, session_id: int, *, organization_id: int | None = None) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        report = import_session.validation_report or {}
        decision = decide_approval(
            import_session.classification_confidence,
            len(report.get("errors") or ()),
            threshold=float(get_importer_setting("IMPORTER_AUTO_APPROVE_THRESHOLD", DEFAULT_AUTO_APPROVE_THRESHOLD)),
        )
        changes: dict[str, Any] = {"approval_status": decision.approval_status, "message": decision.message}
        if decision.auto_approved:
            changes["approved_at"] = datetime.now(timezone.utc)
        return self.state_machine.transition(
            import_session, SessionOperation.SUBMIT, decision.status, **changes
        )

    def approve_session(
        self,
        session_id: int,
        *,
        approver_id: int,
        auto_execute: bool = True,
        organization_id: int | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        self.state_machine.transition(
            import_session,
            SessionOperation.APPROVE,
            ImportSessionStatus.APPROVED,
            approval_status=ApprovalStatus.APPROVED,
            approved_by_user_id=approver_id,
            approved_at=datetime.now(timezone.utc),
            message="Session approved.",
        )
        if not auto_execute:
            return import_session

        if is_worker_enabled():
            from smart_import.importer.tasks import execute_import_session

            execute_import_session.delay(session_id=import_session.id, executed_by=approver_id)
            return import_session
        return self.execute_session(import_session.id, executed_by=approver_id)

    def reject_session(
        self,
        session_id: int,
        *,
        approver_id: int,
        reason: str,
        organization_id: int | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        ensure_allowed(import_session, SessionOperation.REJECT)
        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise ValueError("A rejection reason is required.")
        return self.state_machine.transition(
            import_session,
            SessionOperation.REJECT,
            ImportSessionStatus.REJECTED,
            approval_status=ApprovalStatus.REJECTED,
            approved_by_user_id=approver_id,
            approved_at=datetime.now(timezone.utc),
            rejection_reason=cleaned_reason,
            completed_at=datetime.now(timezone.utc),
            message=f"Session rejected: {cleaned_reason}",
        )

    def execute_session(
        self,
        session_id: int,
        *,
        executed_by: int | None = None,
        organization_id: int | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        ensure_allowed(import_session, SessionOperation.EXECUTE)
        schema = self.catalog.get_active(import_session.domain, organization_id=import_session.organization_id)
        engine = ExecutionEngine(self.session, self.state_machine)
        return engine.execute(import_session, schema=schema, executed_by=executed_by)

    def cancel_session(
        self,
        session_id: int,
        *,
        reason: str | None = None,
        organization_id: int | None = None,
    ) -> ImportSession:
        import_session = self.get_session(session_id, organization_id)
        message = "Session cancelled."
        if reason and reason.strip():
            message = f"Session cancelled: {reason.strip()}"
        return self.state_machine.transition(
            import_session,
            SessionOperation.CANCEL,
            ImportSessionStatus.CANCELLED,
            completed_at=datetime.now(timezone.utc),
            message=message,
        )

    def get_session(self, session_id: int, organization_id: int | None = None) -> ImportSession:
        query = self.session.query(ImportSession).filter(ImportSession.id == session_id)
        if organization_id is not None:
            query = query.filter(ImportSession.organization_id == organization_id)
        import_session = query.one_or_none()
        if import_session is None:
            raise NoResultFound(f"Import session {session_id} not found.")
        return import_session

    def list_sessions(self, filters: SessionFilters, *, organization_id: int | None = None) -> PageResult:
        query = self.session.query(ImportSession)
        predicates = []
        if organization_id is not None:
            predicates.append(ImportSession.organization_id == organization_id)
        if filters.domains:
            predicates.append(ImportSession.domain.in_(filters.domains))
        if filters.statuses:
            predicates.append(ImportSession.status.in_(filters.statuses))
        if filters.approval_statuses:
            predicates.append(ImportSession.approval_status.in_(filters.approval_statuses))
        if filters.date_from:
            predicates.append(ImportSession.created_at >= filters.date_from)
        if filters.date_to:
            predicates.append(ImportSession.created_at <= filters.date_to)
        if predicates:
            query = query.filter(and_(*predicates))

        return _paginate(
            query.order_by(ImportSession.created_at.desc(), ImportSession.id.desc()),
            page=filters.page,
            page_size=filters.page_size,
        )

    def get_audit_log(
        self,
        session_id: int,
        filters: AuditFilters,
        *,
        organization_id: int | None = None,
    ) -> PageResult:
        import_session = self.get_session(session_id, organization_id)
        query = self.session.query(ImportAuditLog).filter(ImportAuditLog.session_id == import_session.id)
        if filters.action_types:
            query = query.filter(ImportAuditLog.action_type.in_(filters.action_types))
        if filters.table_name:
            query = query.filter(ImportAuditLog.table_name == filters.table_name)
        if filters.success is not None:
            query = query.filter(ImportAuditLog.success.is_(filters.success))

        return _paginate(
            query.order_by(ImportAuditLog.executed_at.asc(), ImportAuditLog.id.asc()),
            page=filters.page,
            page_size=filters.page_size,
        )

    def get_schema_definitions(self, domain: str | None = None) -> list[SchemaDefinition]:
        return self.catalog.list_definitions(_coerce_domain(domain) if domain else None)

    def get_validation_rules(self, domain: str | None = None) -> list[ValidationRule]:
        return self.rule_store.list_rules(_coerce_domain(domain) if domain else None)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _log(self, message: str, import_session: ImportSession, *args: Any) -> None:
        if not has_app_context():
            return
        current_app.logger.info(
            message,
            import_session.id,
            *args,
            extra={"import_session_id": import_session.id, "import_status": import_session.status.value},
        )


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _classification_changes(result: ClassificationResult) -> dict[str, Any]:
    return {
        "classification_result": result.as_dict(),
        "classification_confidence": result.confidence,
        "column_mapping": dict(result.column_mapping),
        "unmapped_columns": list(result.unmapped_columns),
        "validation_report": None,
        "action_plan": None,
    }


def _paginate(query, *, page: int, page_size: int) -> PageResult:
    total = query.count()
    if total == 0:
        return PageResult(items=[], total=0, page=page, page_size=page_size, total_pages=0)
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    total_pages = (total + page_size - 1) // page_size
    return PageResult(items=items, total=total, page=page, page_size=page_size, total_pages=total_pages)


def _ensure_upload_size(content: bytes) -> None:
    max_mb = int(get_importer_setting("IMPORTER_MAX_UPLOAD_MB", 25))
    if len(content) > max_mb * 1024 * 1024:
        raise ImportConfigurationError(f"File exceeds the {max_mb} MB upload limit.")


def _coerce_domain(value: str) -> str:
    try:
        return ImportDomain(str(value).strip().lower()).value
    except ValueError:
        raise ImportConfigurationError(f"Unsupported import domain '{value}'.") from None


def _as_iterable(values: Iterable[str] | str | None) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [str(value) for value in values if value not in (None, "") and str(value).strip()]


def _coerce_enum(enum_cls, value: Any, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported {label} filter '{value}'.") from None


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_page_size(candidate: int | str | None) -> int:
    default = int(get_importer_setting("IMPORTER_PAGE_SIZE_DEFAULT", DEFAULT_PAGE_SIZE))
    maximum = int(get_importer_setting("IMPORTER_PAGE_SIZE_MAX", MAX_PAGE_SIZE))
    return min(_coerce_positive_int(candidate, fallback=default), maximum)


def _coerce_optional_bool(candidate: str | bool | None) -> bool | None:
    if candidate is None or candidate == "":
        return None
    if isinstance(candidate, bool):
        return candidate
    normalized = candidate.strip().lower()
    if normalized in ("1", "true", "yes", "y", "on"):
        return True
    if normalized in ("0", "false", "no", "n", "off"):
        return False
    raise ValueError(f"Expected boolean filter value, received '{candidate}'.")


def _coerce_datetime(candidate: str | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo else candidate.replace(tzinfo=timezone.utc)
    text = str(candidate).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse datetime value '{candidate}'. Expected ISO-like formats.")
