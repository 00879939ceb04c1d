# smart_import/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .importer import (
    ApprovalStatus,
    AuditActionType,
    ImportAuditLog,
    ImportDomain,
    ImportSession,
    ImportSessionStatus,
    RuleSeverity,
    SchemaDefinition,
    ValidationRule,
    ValidationRuleType,
)

__all__ = [
    "db",
    "BaseModel",
    # Importer models
    "ImportSession",
    "ImportAuditLog",
    "SchemaDefinition",
    "ValidationRule",
    # Importer enums
    "ImportDomain",
    "ImportSessionStatus",
    "ApprovalStatus",
    "AuditActionType",
    "RuleSeverity",
    "ValidationRuleType",
]
