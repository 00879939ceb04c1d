"""
Read-only access to the schema catalog and the validation rule store.

Both stores resolve organization-specific rows ahead of global rows
(``organization_id IS NULL``) and only ever return active configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from smart_import.importer.contracts import FieldSpec, parse_field_definitions
from smart_import.models import db
from smart_import.models.importer import SchemaDefinition, ValidationRule


@dataclass(frozen=True)
class DomainSchema:
    """Parsed, immutable view of an active schema definition."""

    id: int | None
    domain: str
    table_name: str
    display_name: str
    fields: Tuple[FieldSpec, ...]
    required_fields: Tuple[str, ...]
    unique_fields: Tuple[str, ...]
    version: str

    @property
    def required_count(self) -> int:
        return len(self.required_fields)

    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @classmethod
    def from_model(cls, definition: SchemaDefinition) -> "DomainSchema":
        fields = parse_field_definitions(definition.field_definitions)
        required = tuple(definition.required_fields or ()) or tuple(spec.name for spec in fields if spec.required)
        return cls(
            id=definition.id,
            domain=definition.domain,
            table_name=definition.table_name,
            display_name=definition.display_name,
            fields=fields,
            required_fields=required,
            unique_fields=tuple(definition.unique_fields or ()),
            version=definition.version or "1.0",
        )


def _organization_scope(column, organization_id: int | None):
    if organization_id is None:
        return column.is_(None)
    return or_(column.is_(None), column == organization_id)


class SchemaCatalog:
    """Lookup of per-domain field definitions."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def get_active(self, domain: str, *, organization_id: int | None = None) -> DomainSchema | None:
        definition = (
            self._active_query(organization_id)
            .filter(SchemaDefinition.domain == domain)
            .order_by(SchemaDefinition.organization_id.is_(None), SchemaDefinition.id.asc())
            .first()
        )
        return DomainSchema.from_model(definition) if definition else None

    def list_active(self, *, organization_id: int | None = None) -> list[DomainSchema]:
        definitions = self._active_query(organization_id).order_by(SchemaDefinition.id.asc()).all()
        return [DomainSchema.from_model(definition) for definition in definitions]

    def list_definitions(self, domain: str | None = None) -> list[SchemaDefinition]:
        query = self.session.query(SchemaDefinition).filter(SchemaDefinition.is_active.is_(True))
        if domain:
            query = query.filter(SchemaDefinition.domain == domain)
        return query.order_by(SchemaDefinition.domain.asc(), SchemaDefinition.table_name.asc()).all()

    def _active_query(self, organization_id: int | None):
        return self.session.query(SchemaDefinition).filter(
            SchemaDefinition.is_active.is_(True),
            _organization_scope(SchemaDefinition.organization_id, organization_id),
        )


class RuleStore:
    """Lookup of active validation rules ordered by ascending priority."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def active_rules(self, domain: str, *, organization_id: int | None = None) -> list[ValidationRule]:
        return (
            self.session.query(ValidationRule)
            .filter(
                ValidationRule.domain == domain,
                ValidationRule.is_active.is_(True),
                _organization_scope(ValidationRule.organization_id, organization_id),
            )
            .order_by(ValidationRule.priority.asc(), ValidationRule.id.asc())
            .all()
        )

    def list_rules(self, domain: str | None = None) -> list[ValidationRule]:
        query = self.session.query(ValidationRule).filter(ValidationRule.is_active.is_(True))
        if domain:
            query = query.filter(ValidationRule.domain == domain)
        return query.order_by(ValidationRule.domain.asc(), ValidationRule.priority.asc(), ValidationRule.id.asc()).all()
