"""
SQLAlchemy models for import sessions, the schema catalog, validation rules,
and the row-level audit ledger.

Schema definitions and validation rules are administrative configuration; the
import pipeline only reads them. Audit log rows are appended during execution
and never updated afterwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db, utcnow
from .enums import (
    TERMINAL_STATUSES,
    ApprovalStatus,
    AuditActionType,
    ImportSessionStatus,
    RuleSeverity,
    ValidationRuleType,
)


class ImportSession(BaseModel):
    """A single uploaded file moving through classify, validate, approve and execute."""

    __tablename__ = "import_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(db.Integer, nullable=False, index=True)
    domain: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    status: Mapped[ImportSessionStatus] = mapped_column(
        Enum(ImportSessionStatus, name="import_session_status_enum"),
        nullable=False,
        default=ImportSessionStatus.UPLOADED,
        index=True,
    )
    template_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    file_name: Mapped[str] = mapped_column(db.String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(db.BigInteger, nullable=False, default=0)
    file_type: Mapped[str] = mapped_column(db.String(20), nullable=False)
    file_url: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    file_metadata: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="{rows, columns, headers, sample_data}; sample_data is bounded by IMPORTER_SAMPLE_ROWS",
    )

    classification_result: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    classification_confidence: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    column_mapping: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    unmapped_columns: Mapped[list | None] = mapped_column(db.JSON, nullable=True)

    validation_report: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    action_plan: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="import_session_approval_status_enum"),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )
    approved_by_user_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    execution_result: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    message: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    # ledger rows are written by the execution engine and never removed through the ORM
    audit_logs = relationship("ImportAuditLog", viewonly=True, order_by="ImportAuditLog.id")

    __table_args__ = (
        Index("idx_import_sessions_org_status", "organization_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ImportSession {self.id} {self.domain} {self.status.value if self.status else None}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def headers(self) -> list[str]:
        return list((self.file_metadata or {}).get("headers") or [])

    @property
    def sample_rows(self) -> list[dict[str, Any]]:
        return list((self.file_metadata or {}).get("sample_data") or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "domain": self.domain,
            "status": self.status.value if self.status else None,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "file_metadata": self.file_metadata,
            "classification_result": self.classification_result,
            "classification_confidence": self.classification_confidence,
            "column_mapping": self.column_mapping,
            "unmapped_columns": self.unmapped_columns,
            "validation_report": self.validation_report,
            "action_plan": self.action_plan,
            "approval_status": self.approval_status.value if self.approval_status else None,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejection_reason": self.rejection_reason,
            "execution_result": self.execution_result,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "message": self.message,
        }


class ImportAuditLog(BaseModel):
    """Append-only ledger entry for one row-level action attempted by an import."""

    __tablename__ = "import_audit_logs"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    action_type: Mapped[AuditActionType] = mapped_column(
        Enum(AuditActionType, name="import_audit_action_type_enum"),
        nullable=False,
    )
    table_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    record_id: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    row_number: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    before_state: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    after_state: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    field_changes: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    executed_by_user_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    success: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    session = relationship("ImportSession", viewonly=True)

    __table_args__ = (
        Index("idx_import_audit_session_action", "session_id", "action_type"),
        Index("idx_import_audit_table_record", "table_name", "record_id"),
        Index("idx_import_audit_executed_at", "executed_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "action_type": self.action_type.value,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "row_number": self.row_number,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "success": self.success,
            "error_message": self.error_message,
            "executed_by_user_id": self.executed_by_user_id,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


class SchemaDefinition(BaseModel):
    """Importable field catalog for one domain/table pair."""

    __tablename__ = "schema_definitions"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    domain: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    field_definitions: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    relationships: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    required_fields: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    unique_fields: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    version: Mapped[str] = mapped_column(db.String(20), nullable=False, default="1.0")
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "domain", "table_name", name="uq_schema_definitions_org_domain_table"),
    )

    def __repr__(self) -> str:
        return f"<SchemaDefinition {self.domain}:{self.table_name} v{self.version}>"


class ValidationRule(BaseModel):
    """Typed, prioritized validation rule scoped to a domain field."""

    __tablename__ = "validation_rules"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    domain: Mapped[str] = mapped_column(db.String(50), nullable=False)
    rule_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    rule_type: Mapped[ValidationRuleType] = mapped_column(
        Enum(ValidationRuleType, name="validation_rule_type_enum"),
        nullable=False,
    )
    field_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    rule_definition: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    severity: Mapped[RuleSeverity] = mapped_column(
        Enum(RuleSeverity, name="validation_rule_severity_enum"),
        nullable=False,
        default=RuleSeverity.ERROR,
    )
    error_message_template: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    __table_args__ = (
        Index("idx_validation_rules_domain_active", "domain", "is_active", "priority"),
        CheckConstraint("field_name <> ''", name="ck_validation_rules_field_non_empty"),
    )

    def __repr__(self) -> str:
        return f"<ValidationRule {self.domain}.{self.field_name} {self.rule_type.value}>"
