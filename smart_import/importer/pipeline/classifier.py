"""
Column classifier: domain auto-detection and synonym-based column mapping.

Matching is greedy and order dependent. Fields are visited in schema order and
each one binds the first header (in file order) whose normalized spelling is in
the field's candidate set and that no earlier field has consumed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Tuple

from smart_import.importer.contracts import normalize_header
from smart_import.importer.errors import ImportConfigurationError

from .stores import DomainSchema

DEFAULT_DETECTION_THRESHOLD = 30.0

METHOD_AUTO = "auto"
METHOD_MANUAL = "manual"


@dataclass(frozen=True)
class DomainDetection:
    domain: str
    score: float
    matched_fields: int
    schema: DomainSchema


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of mapping file headers onto a domain schema."""

    detected_domain: str
    confidence: float
    column_mapping: Mapping[str, str]
    unmapped_columns: Tuple[str, ...]
    method: str
    schema_version: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "detected_domain": self.detected_domain,
            "confidence": self.confidence,
            "column_mapping": dict(self.column_mapping),
            "unmapped_columns": list(self.unmapped_columns),
            "method": self.method,
            "schema_version": self.schema_version,
        }


def detect_domain(
    headers: Sequence[str],
    schemas: Iterable[DomainSchema],
    *,
    threshold: float = DEFAULT_DETECTION_THRESHOLD,
) -> DomainDetection | None:
    """
    Pick the schema whose fields best cover the headers.

    Returns ``None`` when no schema scores above ``threshold``. Ties keep the
    schema encountered first.
    """

    normalized_headers = {normalize_header(header) for header in headers}
    best: DomainDetection | None = None
    for schema in schemas:
        matched = sum(1 for spec in schema.fields if spec.candidate_names() & normalized_headers)
        score = matched / max(1, schema.required_count) * 100
        if best is None or score > best.score:
            best = DomainDetection(domain=schema.domain, score=score, matched_fields=matched, schema=schema)

    if best is None or best.score <= threshold:
        return None
    return best


def match_columns(headers: Sequence[str], schema: DomainSchema) -> ClassificationResult:
    """Greedy, non-backtracking synonym match of ``headers`` against ``schema``."""

    normalized = [normalize_header(header) for header in headers]
    consumed: set[int] = set()
    mapping: dict[str, str] = {}

    for spec in schema.fields:
        candidates = spec.candidate_names()
        for index, token in enumerate(normalized):
            if index in consumed or token not in candidates:
                continue
            header = headers[index]
            if header in mapping:
                # duplicate header text already bound through an earlier column
                continue
            mapping[header] = spec.name
            consumed.add(index)
            break

    unmapped = tuple(header for index, header in enumerate(headers) if index not in consumed)
    return ClassificationResult(
        detected_domain=schema.domain,
        confidence=compute_confidence(mapping.values(), schema.required_fields),
        column_mapping=mapping,
        unmapped_columns=unmapped,
        method=METHOD_AUTO,
        schema_version=schema.version,
    )


def compute_confidence(mapped_fields: Iterable[str], required_fields: Sequence[str]) -> float:
    """Share of required target fields that received a column, capped at 100."""

    mapped = set(mapped_fields)
    matched_required = sum(1 for name in set(required_fields) if name in mapped)
    score = matched_required / max(1, len(set(required_fields))) * 100
    return round(min(score, 100.0), 2)


def apply_manual_mapping(
    headers: Sequence[str],
    column_mapping: Mapping[str, str],
    *,
    domain: str,
    schema_version: str | None = None,
) -> ClassificationResult:
    """Use a caller-supplied mapping verbatim with full confidence."""

    mapping = validate_column_mapping(headers, column_mapping)
    unmapped = tuple(header for header in headers if header not in mapping)
    return ClassificationResult(
        detected_domain=domain,
        confidence=100.0,
        column_mapping=mapping,
        unmapped_columns=unmapped,
        method=METHOD_MANUAL,
        schema_version=schema_version,
    )


def validate_column_mapping(headers: Sequence[str], column_mapping: Mapping[str, str]) -> dict[str, str]:
    """Reject mappings that reference unknown headers or bind one field twice."""

    if not isinstance(column_mapping, Mapping):
        raise ImportConfigurationError("Column mapping must be an object of header -> field name.")

    known_headers = set(headers)
    mapping: dict[str, str] = {}
    targets: dict[str, str] = {}
    for header, field_name in column_mapping.items():
        if header not in known_headers:
            raise ImportConfigurationError(f"Column mapping references unknown header '{header}'.")
        target = str(field_name or "").strip()
        if not target:
            raise ImportConfigurationError(f"Column mapping for header '{header}' has no target field.")
        if target in targets:
            raise ImportConfigurationError(
                f"Field '{target}' is mapped from both '{targets[target]}' and '{header}'."
            )
        targets[target] = header
        mapping[header] = target
    return mapping
