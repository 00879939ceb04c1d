"""Field definition contract shared by the schema catalog and the classifier.

Schema definitions persist their fields as an ordered JSON list. This module
turns that list into immutable ``FieldSpec`` values and defines the header
normalization used when matching file columns against field names.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Tuple

FIELD_TYPES = frozenset({"string", "number", "integer", "boolean", "date", "email", "uuid", "json"})

_SEPARATOR_RUN = re.compile(r"[\s\-_]+")


class FieldDefinitionError(ValueError):
    """Raised when a stored field definition cannot be interpreted."""


@dataclass(frozen=True)
class FieldHints:
    """Constraints declared inline on a field; validation enforces them alongside stored rules."""

    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    enum: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing one importable target field."""

    name: str
    display_name: str
    field_type: str = "string"
    required: bool = False
    synonyms: Tuple[str, ...] = ()
    hints: FieldHints = field(default_factory=FieldHints)
    default: Any = None

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical name, display name and synonyms."""

        return (self.name, self.display_name, *self.synonyms)

    def candidate_names(self) -> frozenset[str]:
        """Normalized header spellings that bind to this field."""

        return frozenset(normalize_header(header) for header in self.headers() if header)


def normalize_header(header: str) -> str:
    """Normalize a column header for comparison (case/space/hyphen/underscore agnostic)."""

    token = str(header).strip().lower()
    return _SEPARATOR_RUN.sub("_", token)


def parse_field_definition(raw: Mapping[str, Any]) -> FieldSpec:
    if not isinstance(raw, Mapping):
        raise FieldDefinitionError(f"Field definition must be a mapping, got {raw!r}")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise FieldDefinitionError(f"Field definition missing 'name': {raw!r}")

    field_type = str(raw.get("type") or "string").strip().lower()
    if field_type not in FIELD_TYPES:
        raise FieldDefinitionError(f"Field '{name}' has unsupported type '{field_type}'.")

    synonyms = raw.get("synonyms") or ()
    if isinstance(synonyms, str):
        synonyms = (synonyms,)

    return FieldSpec(
        name=name,
        display_name=str(raw.get("display_name") or name).strip(),
        field_type=field_type,
        required=bool(raw.get("required", False)),
        synonyms=tuple(str(synonym).strip() for synonym in synonyms if str(synonym).strip()),
        hints=_parse_hints(name, raw.get("validation") or {}),
        default=raw.get("default"),
    )


def _parse_hints(name: str, validation: Mapping[str, Any]) -> FieldHints:
    if not isinstance(validation, Mapping):
        raise FieldDefinitionError(f"Field '{name}' validation hints must be a mapping.")
    pattern = validation.get("pattern") or None
    if pattern is not None:
        try:
            re.compile(str(pattern))
        except re.error as exc:
            raise FieldDefinitionError(f"Field '{name}' has an invalid pattern: {exc}") from exc
    return FieldHints(
        min=_optional_number(validation.get("min")),
        max=_optional_number(validation.get("max")),
        min_length=_optional_int(validation.get("min_length")),
        max_length=_optional_int(validation.get("max_length")),
        pattern=str(pattern) if pattern is not None else None,
        enum=tuple(str(value) for value in validation.get("enum") or ()),
    )


def parse_field_definitions(raw_fields: Iterable[Mapping[str, Any]] | None) -> Tuple[FieldSpec, ...]:
    """Parse a stored field list, preserving order and rejecting duplicate names."""

    specs: list[FieldSpec] = []
    seen: set[str] = set()
    for raw in raw_fields or ():
        spec = parse_field_definition(raw)
        if spec.name in seen:
            raise FieldDefinitionError(f"Duplicate field name '{spec.name}'.")
        seen.add(spec.name)
        specs.append(spec)
    return tuple(specs)


def _optional_number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FieldDefinitionError(f"Expected numeric hint, received {value!r}") from None


def _optional_int(value: Any) -> int | None:
    number = _optional_number(value)
    return int(number) if number is not None else None
