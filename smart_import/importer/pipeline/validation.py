"""
Validation engine: evaluates mapped rows against a domain's active rules.

The report is a snapshot. Every run recomputes it from the rows, mapping and
rules it is handed, so identical inputs always produce an identical report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from smart_import.models.importer import RuleSeverity

from .rules import Rule, applies_to, evaluate_rule


@dataclass(frozen=True)
class ValidationIssue:
    row: int
    field: str
    message: str
    severity: RuleSeverity

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message, "severity": self.severity.value}


@dataclass
class ValidationReport:
    """Aggregate outcome of validating a row set."""

    total_rows: int
    validated_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    rules_applied: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    infos: list[ValidationIssue] = field(default_factory=list)
    invalid_row_numbers: list[int] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def all_rows_invalid(self) -> bool:
        return self.invalid_rows > 0 and self.valid_rows == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "validated_rows": self.validated_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "rules_applied": self.rules_applied,
            "errors": [issue.as_dict() for issue in self.errors],
            "warnings": [issue.as_dict() for issue in self.warnings],
            "infos": [issue.as_dict() for issue in self.infos],
            "invalid_row_numbers": list(self.invalid_row_numbers),
        }


@dataclass(frozen=True)
class ActionPlan:
    """Pre-execution estimate shown to approvers."""

    inserts: int
    skips: int
    updates: int = 0
    merges: int = 0

    @property
    def estimated_changes(self) -> int:
        return self.inserts + self.updates + self.merges

    def as_dict(self) -> dict[str, int]:
        return {
            "inserts": self.inserts,
            "updates": self.updates,
            "skips": self.skips,
            "merges": self.merges,
            "estimated_changes": self.estimated_changes,
        }


def map_row(row: Mapping[str, Any], column_mapping: Mapping[str, str]) -> dict[str, Any]:
    """Re-key a source row by target field, keeping only columns present in the row."""

    return {target: row[source] for source, target in column_mapping.items() if source in row}


def validate_rows(
    rows: Sequence[Mapping[str, Any]],
    column_mapping: Mapping[str, str],
    rules: Iterable[Rule],
    *,
    total_rows: int | None = None,
) -> ValidationReport:
    """
    Evaluate every row against ``rules`` (already ordered by priority).

    Rows are numbered from 1 in the order given. A row is invalid when at least
    one error-severity rule fails; warning and info failures are recorded but
    leave the row valid.
    """

    ordered_rules = list(rules)
    report = ValidationReport(
        total_rows=total_rows if total_rows is not None else len(rows),
        validated_rows=len(rows),
        rules_applied=len(ordered_rules),
    )

    for index, row in enumerate(rows):
        row_number = index + 1
        record = map_row(row, column_mapping)
        row_has_error = False
        for rule in ordered_rules:
            if not applies_to(rule, record):
                continue
            failure = evaluate_rule(rule, record, row_number=row_number)
            if failure is None:
                continue
            issue = ValidationIssue(
                row=row_number, field=failure.field, message=failure.message, severity=failure.severity
            )
            if failure.severity is RuleSeverity.ERROR:
                row_has_error = True
                report.errors.append(issue)
            elif failure.severity is RuleSeverity.WARNING:
                report.warnings.append(issue)
            else:
                report.infos.append(issue)

        if row_has_error:
            report.invalid_rows += 1
            report.invalid_row_numbers.append(row_number)
        else:
            report.valid_rows += 1

    return report


def build_action_plan(report: ValidationReport) -> ActionPlan:
    return ActionPlan(inserts=report.valid_rows, skips=report.invalid_rows)
