"""Import pipeline stages and the session service that drives them."""

from __future__ import annotations

from .approval import ApprovalDecision, decide_approval
from .classifier import ClassificationResult, DomainDetection, apply_manual_mapping, detect_domain, match_columns
from .execution import ExecutionEngine, ExecutionSummary, ensure_safe_identifier
from .rules import RuleDefinitionError, compile_rule, evaluate_rule, hint_rules
from .session_service import AuditFilters, ImportSessionService, PageResult, SessionFilters
from .state_machine import SessionOperation, SessionStateMachine
from .stores import DomainSchema, RuleStore, SchemaCatalog
from .validation import ActionPlan, ValidationReport, build_action_plan, validate_rows

__all__ = [
    "ActionPlan",
    "ApprovalDecision",
    "AuditFilters",
    "ClassificationResult",
    "DomainDetection",
    "DomainSchema",
    "ExecutionEngine",
    "ExecutionSummary",
    "ImportSessionService",
    "PageResult",
    "RuleDefinitionError",
    "RuleStore",
    "SchemaCatalog",
    "SessionFilters",
    "SessionOperation",
    "SessionStateMachine",
    "ValidationReport",
    "apply_manual_mapping",
    "build_action_plan",
    "compile_rule",
    "decide_approval",
    "detect_domain",
    "ensure_safe_identifier",
    "evaluate_rule",
    "hint_rules",
    "match_columns",
    "validate_rows",
]
