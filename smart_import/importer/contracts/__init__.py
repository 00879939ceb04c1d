"""Field contract helpers for the schema catalog and classifier."""

from __future__ import annotations

from .fields import (
    FIELD_TYPES,
    FieldDefinitionError,
    FieldHints,
    FieldSpec,
    normalize_header,
    parse_field_definition,
    parse_field_definitions,
)

__all__ = [
    "FIELD_TYPES",
    "FieldDefinitionError",
    "FieldHints",
    "FieldSpec",
    "normalize_header",
    "parse_field_definition",
    "parse_field_definitions",
]
