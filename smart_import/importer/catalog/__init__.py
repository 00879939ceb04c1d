"""Load schema definitions and validation rules from YAML catalog files and seed them."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import yaml
from flask import Flask, current_app
from sqlalchemy.orm import Session

from smart_import.importer.contracts import FieldDefinitionError, parse_field_definitions
from smart_import.importer.pipeline.rules import RuleDefinitionError, compile_rule
from smart_import.models import db
from smart_import.models.importer import (
    ImportDomain,
    RuleSeverity,
    SchemaDefinition,
    ValidationRule,
    ValidationRuleType,
)


class CatalogLoadError(RuntimeError):
    """Raised when a catalog file cannot be loaded or validated."""


@dataclass(frozen=True)
class RuleSpec:
    rule_name: str
    field_name: str
    rule_type: ValidationRuleType
    severity: RuleSeverity
    definition: Mapping[str, Any]
    priority: int = 0
    message: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CatalogSpec:
    domain: str
    table_name: str
    display_name: str
    description: str | None
    version: str
    fields: Sequence[Mapping[str, Any]]
    required_fields: Sequence[str]
    unique_fields: Sequence[str]
    relationships: Mapping[str, Any] | None
    rules: Sequence[RuleSpec]
    checksum: str
    path: Path


@dataclass
class SeedSummary:
    schemas_created: int = 0
    schemas_updated: int = 0
    rules_created: int = 0
    rules_updated: int = 0
    files: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "schemas_created": self.schemas_created,
            "schemas_updated": self.schemas_updated,
            "rules_created": self.rules_created,
            "rules_updated": self.rules_updated,
            "files": list(self.files),
        }


def load_catalog_file(path: str | Path) -> CatalogSpec:
    """
    Load and validate one YAML catalog file (one domain per file).
    """

    path = Path(path)
    if not path.exists():
        raise CatalogLoadError(f"Catalog file not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise CatalogLoadError(f"Failed to parse catalog YAML at {path}: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise CatalogLoadError(f"Catalog file {path} must contain a mapping at the top level.")

    try:
        domain = str(raw["domain"]).strip()
        fields_payload = raw["fields"]
    except KeyError as exc:
        raise CatalogLoadError(f"Missing required catalog attribute in {path.name}: {exc}") from exc

    try:
        ImportDomain(domain)
    except ValueError:
        raise CatalogLoadError(f"Unknown import domain '{domain}' in {path.name}.") from None

    try:
        parsed_fields = parse_field_definitions(fields_payload)
    except FieldDefinitionError as exc:
        raise CatalogLoadError(f"{path.name}: {exc}") from exc

    field_names = {spec.name for spec in parsed_fields}
    required_fields = [str(name) for name in raw.get("required_fields") or ()]
    unique_fields = [str(name) for name in raw.get("unique_fields") or ()]
    unknown = sorted((set(required_fields) | set(unique_fields)) - field_names)
    if unknown:
        raise CatalogLoadError(f"{path.name}: required/unique fields not defined: {', '.join(unknown)}")

    rules = tuple(_parse_rule(entry, domain=domain, source=path.name) for entry in raw.get("rules") or ())
    seen_rules: set[str] = set()
    for rule in rules:
        if rule.rule_name in seen_rules:
            raise CatalogLoadError(f"{path.name}: duplicate rule_name '{rule.rule_name}'.")
        seen_rules.add(rule.rule_name)

    return CatalogSpec(
        domain=domain,
        table_name=str(raw.get("table_name") or domain).strip(),
        display_name=str(raw.get("display_name") or domain.replace("_", " ").title()),
        description=raw.get("description"),
        version=str(raw.get("version") or "1.0"),
        fields=tuple(dict(entry) for entry in fields_payload),
        required_fields=tuple(required_fields),
        unique_fields=tuple(unique_fields),
        relationships=raw.get("relationships"),
        rules=rules,
        checksum=_compute_checksum(raw),
        path=path,
    )


def load_catalog_directory(directory: str | Path) -> list[CatalogSpec]:
    directory = Path(directory)
    if not directory.is_dir():
        raise CatalogLoadError(f"Catalog directory not found at {directory}")
    return [load_catalog_file(path) for path in sorted(directory.glob("*.y*ml"))]


def get_catalog_directory(app: Flask | None = None) -> Path:
    app = app or current_app
    configured = app.config.get("IMPORTER_CATALOG_DIR")
    if not configured:
        raise CatalogLoadError("IMPORTER_CATALOG_DIR is not configured.")
    return Path(configured)


def seed_catalog(specs: Iterable[CatalogSpec], *, session: Session | None = None) -> SeedSummary:
    """
    Upsert global schema definitions by (domain, table_name) and rules by (domain, rule_name).

    Commits once after every file has been applied.
    """

    session = session or db.session
    summary = SeedSummary()
    for spec in specs:
        definition = (
            session.query(SchemaDefinition)
            .filter(
                SchemaDefinition.organization_id.is_(None),
                SchemaDefinition.domain == spec.domain,
                SchemaDefinition.table_name == spec.table_name,
            )
            .one_or_none()
        )
        if definition is None:
            definition = SchemaDefinition(domain=spec.domain, table_name=spec.table_name)
            session.add(definition)
            summary.schemas_created += 1
        else:
            summary.schemas_updated += 1
        definition.display_name = spec.display_name
        definition.description = spec.description
        definition.field_definitions = [dict(entry) for entry in spec.fields]
        definition.required_fields = list(spec.required_fields)
        definition.unique_fields = list(spec.unique_fields)
        definition.relationships = dict(spec.relationships) if spec.relationships else None
        definition.version = spec.version
        definition.is_active = True
        definition.metadata_json = {"catalog_checksum": spec.checksum, "catalog_file": spec.path.name}

        for rule_spec in spec.rules:
            rule = (
                session.query(ValidationRule)
                .filter(
                    ValidationRule.organization_id.is_(None),
                    ValidationRule.domain == spec.domain,
                    ValidationRule.rule_name == rule_spec.rule_name,
                )
                .one_or_none()
            )
            if rule is None:
                rule = ValidationRule(domain=spec.domain, rule_name=rule_spec.rule_name)
                session.add(rule)
                summary.rules_created += 1
            else:
                summary.rules_updated += 1
            rule.field_name = rule_spec.field_name
            rule.rule_type = rule_spec.rule_type
            rule.severity = rule_spec.severity
            rule.rule_definition = dict(rule_spec.definition)
            rule.priority = rule_spec.priority
            rule.error_message_template = rule_spec.message
            rule.description = rule_spec.description
            rule.is_active = True
        summary.files.append(spec.path.name)

    session.commit()
    return summary


def _parse_rule(entry: Any, *, domain: str, source: str) -> RuleSpec:
    if not isinstance(entry, Mapping):
        raise CatalogLoadError(f"{source}: rule definition must be a mapping, got {entry!r}")
    try:
        rule_name = str(entry["rule_name"]).strip()
        field_name = str(entry["field_name"]).strip()
        rule_type = ValidationRuleType(str(entry["rule_type"]).strip().lower())
        severity = RuleSeverity(str(entry.get("severity", "error")).strip().lower())
        priority = int(entry.get("priority", 0))
    except KeyError as exc:
        raise CatalogLoadError(f"{source}: rule missing attribute {exc}") from exc
    except ValueError as exc:
        raise CatalogLoadError(f"{source}: invalid rule attribute: {exc}") from exc

    definition = entry.get("definition") or {}
    if not isinstance(definition, Mapping):
        raise CatalogLoadError(f"{source}: rule '{rule_name}' definition must be a mapping.")

    candidate = ValidationRule(
        domain=domain,
        rule_name=rule_name,
        field_name=field_name,
        rule_type=rule_type,
        severity=severity,
        rule_definition=dict(definition),
        priority=priority,
    )
    try:
        compile_rule(candidate)
    except RuleDefinitionError as exc:
        raise CatalogLoadError(f"{source}: {exc}") from exc

    return RuleSpec(
        rule_name=rule_name,
        field_name=field_name,
        rule_type=rule_type,
        severity=severity,
        definition=dict(definition),
        priority=priority,
        message=entry.get("message"),
        description=entry.get("description"),
    )


def _compute_checksum(raw: Mapping[str, Any]) -> str:
    serialized = json.dumps(raw, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(serialized).hexdigest()
