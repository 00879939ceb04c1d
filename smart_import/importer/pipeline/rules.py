"""
Typed validation rules and their evaluator.

Stored ``ValidationRule`` rows carry a JSON ``rule_definition`` whose shape
depends on ``rule_type``. ``compile_rule`` turns each row into one of the frozen
variants below, carrying only the parameters that rule type understands, and
``evaluate_rule`` is the single place where each variant's contract lives.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Tuple, Union

from email_validator import EmailNotValidError, validate_email

from smart_import.importer.contracts import FieldSpec
from smart_import.models.importer import RuleSeverity, ValidationRule, ValidationRuleType

_UUID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S")

SUPPORTED_FORMATS = ("email", "uuid", "date")
REQUIRED_IF = "required_if"


class RuleDefinitionError(ValueError):
    """Raised when a stored rule definition does not fit its rule type."""


@dataclass(frozen=True)
class RuleMeta:
    """Attributes every rule variant carries regardless of type."""

    rule_id: int | None
    rule_name: str
    field_name: str
    severity: RuleSeverity
    message_template: str | None = None
    priority: int = 0


@dataclass(frozen=True)
class RequiredRule:
    meta: RuleMeta


@dataclass(frozen=True)
class RangeRule:
    meta: RuleMeta
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True)
class RegexRule:
    meta: RuleMeta
    pattern: re.Pattern


@dataclass(frozen=True)
class EnumRule:
    meta: RuleMeta
    values: Tuple[str, ...]


@dataclass(frozen=True)
class LengthRule:
    meta: RuleMeta
    min_length: int | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class FormatRule:
    meta: RuleMeta
    format: str


@dataclass(frozen=True)
class CrossFieldRule:
    meta: RuleMeta
    condition: str
    dependent_field: str


@dataclass(frozen=True)
class DeferredRule:
    """Unique, foreign-key and custom checks need the full dataset; they pass here."""

    meta: RuleMeta
    rule_type: ValidationRuleType


Rule = Union[RequiredRule, RangeRule, RegexRule, EnumRule, LengthRule, FormatRule, CrossFieldRule, DeferredRule]


@dataclass(frozen=True)
class RuleFailure:
    field: str
    message: str
    severity: RuleSeverity


def compile_rule(model: ValidationRule) -> Rule:
    """Build the typed variant for a stored rule row."""

    meta = RuleMeta(
        rule_id=model.id,
        rule_name=model.rule_name,
        field_name=model.field_name,
        severity=RuleSeverity(model.severity),
        message_template=model.error_message_template or None,
        priority=model.priority or 0,
    )
    definition: Mapping[str, Any] = model.rule_definition or {}
    rule_type = ValidationRuleType(model.rule_type)

    if rule_type is ValidationRuleType.REQUIRED:
        return RequiredRule(meta)
    if rule_type is ValidationRuleType.RANGE:
        return RangeRule(meta, min=_number_param(definition, "min"), max=_number_param(definition, "max"))
    if rule_type is ValidationRuleType.REGEX:
        pattern = definition.get("pattern")
        if not pattern:
            raise RuleDefinitionError(f"Rule '{model.rule_name}' requires a 'pattern'.")
        try:
            return RegexRule(meta, pattern=re.compile(str(pattern)))
        except re.error as exc:
            raise RuleDefinitionError(f"Rule '{model.rule_name}' has an invalid pattern: {exc}") from exc
    if rule_type is ValidationRuleType.ENUM:
        return EnumRule(meta, values=tuple(str(value) for value in definition.get("values") or ()))
    if rule_type is ValidationRuleType.LENGTH:
        min_length = _number_param(definition, "min_length")
        max_length = _number_param(definition, "max_length")
        return LengthRule(
            meta,
            min_length=int(min_length) if min_length is not None else None,
            max_length=int(max_length) if max_length is not None else None,
        )
    if rule_type is ValidationRuleType.FORMAT:
        fmt = str(definition.get("format") or "").strip().lower()
        if fmt not in SUPPORTED_FORMATS:
            raise RuleDefinitionError(f"Rule '{model.rule_name}' has unsupported format '{fmt}'.")
        return FormatRule(meta, format=fmt)
    if rule_type is ValidationRuleType.CROSS_FIELD:
        condition = str(definition.get("condition") or "").strip()
        dependent = str(definition.get("dependent_field") or "").strip()
        if condition != REQUIRED_IF or not dependent:
            raise RuleDefinitionError(
                f"Rule '{model.rule_name}' must declare condition 'required_if' and a dependent_field."
            )
        return CrossFieldRule(meta, condition=condition, dependent_field=dependent)
    return DeferredRule(meta, rule_type=rule_type)


def hint_rules(fields: Iterable[FieldSpec], stored: Iterable[Rule] = ()) -> list[Rule]:
    """
    Turn field-level validation hints into error-severity rules.

    A hint is dropped when a stored rule of the same kind already targets the
    field, so catalog rules always win over inline hints. The result is ordered
    after every stored rule, field by field.
    """

    stored = list(stored)
    covered = {(rule.meta.field_name, type(rule)) for rule in stored}
    priority = max((rule.meta.priority for rule in stored), default=0) + 1
    rules: list[Rule] = []

    def meta(field_name: str, kind: str) -> RuleMeta:
        return RuleMeta(
            rule_id=None,
            rule_name=f"{field_name}_{kind}_hint",
            field_name=field_name,
            severity=RuleSeverity.ERROR,
            priority=priority,
        )

    for spec in fields:
        hints = spec.hints
        candidates: list[Rule] = []
        if hints.min is not None or hints.max is not None:
            candidates.append(RangeRule(meta(spec.name, "range"), min=hints.min, max=hints.max))
        if hints.min_length is not None or hints.max_length is not None:
            candidates.append(
                LengthRule(meta(spec.name, "length"), min_length=hints.min_length, max_length=hints.max_length)
            )
        if hints.pattern:
            candidates.append(RegexRule(meta(spec.name, "regex"), pattern=re.compile(hints.pattern)))
        if hints.enum:
            candidates.append(EnumRule(meta(spec.name, "enum"), values=hints.enum))
        rules.extend(rule for rule in candidates if (spec.name, type(rule)) not in covered)
    return rules


def applies_to(rule: Rule, record: Mapping[str, Any]) -> bool:
    """A rule runs when its field, or its dependency field, is present in the mapped record."""

    if rule.meta.field_name in record:
        return True
    return isinstance(rule, CrossFieldRule) and rule.dependent_field in record


def evaluate_rule(rule: Rule, record: Mapping[str, Any], *, row_number: int) -> RuleFailure | None:
    """Evaluate one rule against a mapped record, returning the failure if any."""

    field_name = rule.meta.field_name
    value = record.get(field_name)

    if isinstance(rule, RequiredRule):
        if _is_blank(value):
            return _fail(rule, value, row_number, f'Field "{field_name}" is required')
        return None

    if isinstance(rule, RangeRule):
        number = _as_number(value)
        if number is None:
            return _fail(rule, value, row_number, f'Field "{field_name}" must be a number')
        if rule.min is not None and number < rule.min:
            return _fail(rule, value, row_number, f'Field "{field_name}" must be at least {_format_number(rule.min)}')
        if rule.max is not None and number > rule.max:
            return _fail(rule, value, row_number, f'Field "{field_name}" must be at most {_format_number(rule.max)}')
        return None

    if isinstance(rule, RegexRule):
        if _is_blank(value) or rule.pattern.search(str(value)):
            return None
        return _fail(rule, value, row_number, f'Field "{field_name}" does not match required pattern')

    if isinstance(rule, EnumRule):
        if _is_blank(value) or str(value) in rule.values:
            return None
        return _fail(rule, value, row_number, f'Field "{field_name}" must be one of: {", ".join(rule.values)}')

    if isinstance(rule, LengthRule):
        if _is_blank(value):
            return None
        length = len(str(value))
        if rule.min_length is not None and length < rule.min_length:
            return _fail(
                rule, value, row_number, f'Field "{field_name}" must be at least {rule.min_length} characters'
            )
        if rule.max_length is not None and length > rule.max_length:
            return _fail(rule, value, row_number, f'Field "{field_name}" must be at most {rule.max_length} characters')
        return None

    if isinstance(rule, FormatRule):
        if _is_blank(value) or _matches_format(rule.format, str(value).strip()):
            return None
        label = "UUID" if rule.format == "uuid" else rule.format
        return _fail(rule, value, row_number, f'Field "{field_name}" is not a valid {label}')

    if isinstance(rule, CrossFieldRule):
        if not _is_blank(record.get(rule.dependent_field)) and _is_blank(value):
            return _fail(
                rule,
                value,
                row_number,
                f'Field "{field_name}" is required when "{rule.dependent_field}" is set',
            )
        return None

    if isinstance(rule, DeferredRule):
        return None

    raise TypeError(f"Unhandled rule variant: {type(rule).__name__}")


def render_message(template: str | None, *, field: str, value: Any, row_number: int, default: str) -> str:
    """Fill ``{{field}}``, ``{{value}}`` and ``{{row}}`` placeholders, or fall back to ``default``."""

    if not template:
        return default
    return (
        template.replace("{{field}}", field)
        .replace("{{value}}", "" if value is None else str(value))
        .replace("{{row}}", str(row_number))
    )


def _fail(rule: Rule, value: Any, row_number: int, default: str) -> RuleFailure:
    meta = rule.meta
    message = render_message(
        meta.message_template, field=meta.field_name, value=value, row_number=row_number, default=default
    )
    return RuleFailure(field=meta.field_name, message=message, severity=meta.severity)


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _number_param(definition: Mapping[str, Any], key: str) -> float | None:
    raw = definition.get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise RuleDefinitionError(f"Rule parameter '{key}' must be numeric, received {raw!r}") from None


def _matches_format(fmt: str, text: str) -> bool:
    if fmt == "email":
        try:
            validate_email(text, check_deliverability=False)
        except EmailNotValidError:
            return False
        return True
    if fmt == "uuid":
        return bool(_UUID_REGEX.match(text))
    if fmt == "date":
        return parse_date(text) is not None
    return False


def parse_date(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None
