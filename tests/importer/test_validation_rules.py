from __future__ import annotations

import pytest

from smart_import.importer.contracts import parse_field_definitions
from smart_import.importer.pipeline.rules import (
    CrossFieldRule,
    DeferredRule,
    EnumRule,
    LengthRule,
    RangeRule,
    RegexRule,
    RuleDefinitionError,
    applies_to,
    compile_rule,
    evaluate_rule,
    hint_rules,
    render_message,
)
from smart_import.importer.pipeline.validation import build_action_plan, map_row, validate_rows
from smart_import.models.importer import RuleSeverity, ValidationRule, ValidationRuleType


def _rule(field_name, rule_type, definition=None, *, severity=RuleSeverity.ERROR, message=None, priority=0):
    return compile_rule(
        ValidationRule(
            domain="products",
            rule_name=f"{field_name}_{rule_type.value}",
            field_name=field_name,
            rule_type=rule_type,
            rule_definition=definition or {},
            severity=severity,
            error_message_template=message,
            priority=priority,
        )
    )


def _message(rule, record):
    failure = evaluate_rule(rule, record, row_number=1)
    return failure.message if failure else None


def test_required_rule_treats_blank_as_missing():
    rule = _rule("sku", ValidationRuleType.REQUIRED)
    assert _message(rule, {"sku": "  "}) == 'Field "sku" is required'
    assert _message(rule, {"sku": None}) == 'Field "sku" is required'
    assert _message(rule, {"sku": "A-1"}) is None


def test_range_rule_messages():
    rule = _rule("price", ValidationRuleType.RANGE, {"min": 0, "max": 10.5})
    assert _message(rule, {"price": "abc"}) == 'Field "price" must be a number'
    assert _message(rule, {"price": "-1"}) == 'Field "price" must be at least 0'
    assert _message(rule, {"price": "11"}) == 'Field "price" must be at most 10.5'
    assert _message(rule, {"price": "10.5"}) is None


def test_regex_enum_and_length_rules():
    regex = _rule("sku", ValidationRuleType.REGEX, {"pattern": r"^SKU-\d+$"})
    assert isinstance(regex, RegexRule)
    assert _message(regex, {"sku": "BAD"}) == 'Field "sku" does not match required pattern'
    assert _message(regex, {"sku": "SKU-42"}) is None

    enum = _rule("status", ValidationRuleType.ENUM, {"values": ["active", "retired"]})
    assert _message(enum, {"status": "paused"}) == 'Field "status" must be one of: active, retired'
    assert _message(enum, {"status": ""}) is None

    length = _rule("name", ValidationRuleType.LENGTH, {"min_length": 2, "max_length": 4})
    assert _message(length, {"name": "a"}) == 'Field "name" must be at least 2 characters'
    assert _message(length, {"name": "abcde"}) == 'Field "name" must be at most 4 characters'
    assert _message(length, {"name": "abc"}) is None


def test_format_rules():
    email = _rule("contact", ValidationRuleType.FORMAT, {"format": "email"})
    assert _message(email, {"contact": "not-an-email"}) == 'Field "contact" is not a valid email'
    assert _message(email, {"contact": "ops@acme.io"}) is None

    uuid_rule = _rule("ref", ValidationRuleType.FORMAT, {"format": "uuid"})
    assert _message(uuid_rule, {"ref": "1234"}) == 'Field "ref" is not a valid UUID'
    assert _message(uuid_rule, {"ref": "7b6f1c1e-8a0c-4c9e-9a7e-3f1e2d4c5b6a"}) is None

    date_rule = _rule("delivered_on", ValidationRuleType.FORMAT, {"format": "date"})
    assert _message(date_rule, {"delivered_on": "2024-13-45"}) == 'Field "delivered_on" is not a valid date'
    assert _message(date_rule, {"delivered_on": "2024-02-29"}) is None


def test_cross_field_rule_runs_when_dependency_present():
    rule = _rule(
        "vat_number",
        ValidationRuleType.CROSS_FIELD,
        {"condition": "required_if", "dependent_field": "country"},
    )
    assert isinstance(rule, CrossFieldRule)
    record = {"country": "DE"}
    assert applies_to(rule, record)
    assert _message(rule, record) == 'Field "vat_number" is required when "country" is set'
    assert _message(rule, {"country": "DE", "vat_number": "DE123"}) is None
    assert _message(rule, {"country": ""}) is None


def test_deferred_rule_types_never_fail():
    rule = _rule("sku", ValidationRuleType.UNIQUE)
    assert isinstance(rule, DeferredRule)
    assert _message(rule, {"sku": "dup"}) is None


def test_invalid_rule_definitions_are_rejected():
    with pytest.raises(RuleDefinitionError):
        _rule("sku", ValidationRuleType.REGEX, {"pattern": "("})
    with pytest.raises(RuleDefinitionError):
        _rule("sku", ValidationRuleType.FORMAT, {"format": "iban"})
    with pytest.raises(RuleDefinitionError):
        _rule("sku", ValidationRuleType.CROSS_FIELD, {"condition": "equals"})


def test_render_message_placeholders():
    rendered = render_message(
        "Row {{row}}: {{field}} has bad value '{{value}}'", field="price", value="-3", row_number=4, default="x"
    )
    assert rendered == "Row 4: price has bad value '-3'"
    assert render_message(None, field="price", value=None, row_number=1, default="fallback") == "fallback"


def test_map_row_keeps_only_mapped_columns():
    assert map_row({"SKU": "A", "Extra": "x"}, {"SKU": "sku", "Missing": "name"}) == {"sku": "A"}


def test_validate_rows_counts_and_severities():
    rules = [
        _rule("sku", ValidationRuleType.REQUIRED, priority=1),
        _rule("price", ValidationRuleType.RANGE, {"min": 0}, priority=2),
        _rule(
            "status",
            ValidationRuleType.ENUM,
            {"values": ["active"]},
            severity=RuleSeverity.WARNING,
            priority=3,
        ),
    ]
    rows = [
        {"SKU": "A", "Price": "1", "Status": "active"},
        {"SKU": "", "Price": "2", "Status": "active"},
        {"SKU": "C", "Price": "-1", "Status": "paused"},
        {"SKU": "D", "Price": "4", "Status": "paused"},
    ]
    mapping = {"SKU": "sku", "Price": "price", "Status": "status"}

    report = validate_rows(rows, mapping, rules, total_rows=40)

    assert report.total_rows == 40
    assert report.validated_rows == 4
    assert report.valid_rows == 2
    assert report.invalid_rows == 2
    assert report.invalid_row_numbers == [2, 3]
    assert report.rules_applied == 3
    assert [(issue.row, issue.field) for issue in report.errors] == [(2, "sku"), (3, "price")]
    assert [(issue.row, issue.field) for issue in report.warnings] == [(3, "status"), (4, "status")]
    assert report.warnings[0].severity is RuleSeverity.WARNING
    assert not report.all_rows_invalid

    plan = build_action_plan(report)
    assert plan.as_dict() == {"inserts": 2, "updates": 0, "skips": 2, "merges": 0, "estimated_changes": 2}


def test_validate_rows_skips_rules_for_unmapped_fields():
    rules = [_rule("name", ValidationRuleType.REQUIRED)]
    report = validate_rows([{"SKU": "A"}], {"SKU": "sku"}, rules)

    assert report.valid_rows == 1
    assert report.errors == []


def test_validate_rows_is_deterministic():
    rules = [
        _rule("sku", ValidationRuleType.REQUIRED, priority=1),
        _rule("sku", ValidationRuleType.REGEX, {"pattern": "^S"}, priority=2),
    ]
    rows = [{"SKU": ""}, {"SKU": "X"}, {"SKU": "S1"}]
    first = validate_rows(rows, {"SKU": "sku"}, rules).as_dict()
    second = validate_rows(rows, {"SKU": "sku"}, rules).as_dict()

    assert first == second
    assert first["invalid_row_numbers"] == [1, 2]


def test_field_hints_become_rules_unless_a_stored_rule_covers_them():
    fields = parse_field_definitions(
        [
            {"name": "sku", "validation": {"max_length": 8, "pattern": "^[A-Z0-9-]+$"}},
            {"name": "price", "type": "number", "validation": {"min": 0}},
            {"name": "status", "validation": {"enum": ["active", "discontinued"]}},
            {"name": "category"},
        ]
    )
    stored = [_rule("price", ValidationRuleType.RANGE, {"min": 1}, priority=40)]

    rules = hint_rules(fields, stored)

    assert [(type(rule), rule.meta.field_name) for rule in rules] == [
        (LengthRule, "sku"),
        (RegexRule, "sku"),
        (EnumRule, "status"),
    ]
    assert all(rule.meta.priority == 41 and rule.meta.severity is RuleSeverity.ERROR for rule in rules)
    assert _message(rules[0], {"sku": "SKU-123456"}) == 'Field "sku" must be at most 8 characters'
    assert _message(rules[1], {"sku": "sku 1"}) == 'Field "sku" does not match required pattern'
    assert _message(rules[2], {"status": "paused"}) == 'Field "status" must be one of: active, discontinued'

    standalone = hint_rules(fields)
    assert isinstance(standalone[2], RangeRule) and standalone[2].min == 0


def test_invalid_hint_pattern_is_rejected():
    with pytest.raises(ValueError, match="invalid pattern"):
        parse_field_definitions([{"name": "sku", "validation": {"pattern": "("}}])
