"""
Importer data models.
"""

from .enums import (
    TERMINAL_STATUSES,
    ApprovalStatus,
    AuditActionType,
    ImportDomain,
    ImportSessionStatus,
    RuleSeverity,
    ValidationRuleType,
)
from .schema import ImportAuditLog, ImportSession, SchemaDefinition, ValidationRule

__all__ = [
    "TERMINAL_STATUSES",
    "ApprovalStatus",
    "AuditActionType",
    "ImportDomain",
    "ImportSessionStatus",
    "RuleSeverity",
    "ValidationRuleType",
    "ImportAuditLog",
    "ImportSession",
    "SchemaDefinition",
    "ValidationRule",
]
