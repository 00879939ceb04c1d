# smart_import/models/importer/enums.py
"""
Enums shared by the importer models and pipeline.
"""

from __future__ import annotations

import enum


class ImportDomain(str, enum.Enum):
    """Closed set of target data domains an upload can be imported into."""

    PRODUCTS = "products"
    MACHINES = "machines"
    USERS = "users"
    EMPLOYEES = "employees"
    TRANSACTIONS = "transactions"
    SALES = "sales"
    INVENTORY = "inventory"
    CUSTOMERS = "customers"
    PRICES = "prices"
    CATEGORIES = "categories"
    LOCATIONS = "locations"
    CONTRACTORS = "contractors"
    RECIPES = "recipes"
    PLANOGRAMS = "planograms"
    CONTRACTS = "contracts"
    EQUIPMENT = "equipment"
    SPARE_PARTS = "spare_parts"
    ROUTES = "routes"


class ImportSessionStatus(str, enum.Enum):
    """Lifecycle states for an import session."""

    UPLOADED = "uploaded"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    MAPPING = "mapping"
    MAPPED = "mapped"
    VALIDATING = "validating"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        ImportSessionStatus.COMPLETED,
        ImportSessionStatus.COMPLETED_WITH_ERRORS,
        ImportSessionStatus.FAILED,
        ImportSessionStatus.REJECTED,
        ImportSessionStatus.CANCELLED,
    }
)


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


class AuditActionType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    MERGE = "merge"
    SKIP = "skip"
    DELETE = "delete"
    RESTORE = "restore"


class RuleSeverity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationRuleType(str, enum.Enum):
    REQUIRED = "required"
    RANGE = "range"
    REGEX = "regex"
    ENUM = "enum"
    LENGTH = "length"
    FORMAT = "format"
    CROSS_FIELD = "cross_field"
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"
    CUSTOM = "custom"
