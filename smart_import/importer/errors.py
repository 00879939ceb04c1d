"""
Exception hierarchy for the import engine.

Precondition and configuration problems are raised to the caller. Row-level
data problems are never raised; they are recorded on the session report or in
the audit ledger instead.
"""

from __future__ import annotations

from typing import Iterable

from smart_import.models.importer import ImportSessionStatus


class ImportEngineError(RuntimeError):
    """Base class for import engine failures."""

    retryable = False


class SessionStateError(ImportEngineError):
    """Raised when an operation is requested while the session is in the wrong status."""

    def __init__(
        self,
        *,
        session_id: int | None,
        operation: str,
        current_status: ImportSessionStatus,
        required_statuses: Iterable[ImportSessionStatus],
    ) -> None:
        self.session_id = session_id
        self.operation = operation
        self.current_status = current_status
        self.required_statuses = tuple(required_statuses)
        required = ", ".join(status.value for status in self.required_statuses) or "none"
        super().__init__(
            f"Cannot {operation} import session {session_id}: status is '{current_status.value}', "
            f"requires one of [{required}]."
        )


class ImportConfigurationError(ImportEngineError):
    """Raised for missing schemas, undetectable domains, unsupported files or invalid mappings."""


class UnsafeIdentifierError(ImportConfigurationError):
    """Raised when a table or column name is not a safe SQL identifier."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Unsafe {kind} name: {identifier!r}")
