"""
Import session state machine.

Every legal move is listed in ``TRANSITIONS`` as (current status, operation) ->
permitted next statuses. ``SessionStateMachine.transition`` is the only code
path that changes a session's status; it persists the move as a
compare-and-set so two workers racing on the same session cannot both pass
the precondition.
"""

from __future__ import annotations

import enum
from typing import Any, Mapping, Tuple

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.orm import Session

from smart_import.importer.errors import SessionStateError
from smart_import.models import db
from smart_import.models.importer import TERMINAL_STATUSES, ImportSession, ImportSessionStatus

S = ImportSessionStatus


class SessionOperation(str, enum.Enum):
    CLASSIFY = "classify"
    FINISH_CLASSIFY = "finish_classify"
    REMAP = "remap"
    FINISH_REMAP = "finish_remap"
    VALIDATE = "validate"
    FINISH_VALIDATE = "finish_validate"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    EXECUTE = "execute"
    FINISH_EXECUTE = "finish_execute"
    CANCEL = "cancel"


_CANCELLABLE = tuple(status for status in S if status not in TERMINAL_STATUSES and status is not S.EXECUTING)

TRANSITIONS: Mapping[tuple[ImportSessionStatus, SessionOperation], frozenset[ImportSessionStatus]] = {
    (S.UPLOADED, SessionOperation.CLASSIFY): frozenset({S.CLASSIFYING}),
    (S.CLASSIFIED, SessionOperation.CLASSIFY): frozenset({S.CLASSIFYING}),
    (S.CLASSIFYING, SessionOperation.FINISH_CLASSIFY): frozenset({S.CLASSIFIED, S.UPLOADED}),
    (S.CLASSIFIED, SessionOperation.REMAP): frozenset({S.MAPPING}),
    (S.MAPPED, SessionOperation.REMAP): frozenset({S.MAPPING}),
    (S.VALIDATION_FAILED, SessionOperation.REMAP): frozenset({S.MAPPING}),
    (S.MAPPING, SessionOperation.FINISH_REMAP): frozenset({S.MAPPED}),
    (S.CLASSIFIED, SessionOperation.VALIDATE): frozenset({S.VALIDATING}),
    (S.MAPPED, SessionOperation.VALIDATE): frozenset({S.VALIDATING}),
    (S.VALIDATING, SessionOperation.FINISH_VALIDATE): frozenset({S.VALIDATED, S.VALIDATION_FAILED}),
    (S.VALIDATED, SessionOperation.SUBMIT): frozenset({S.APPROVED, S.AWAITING_APPROVAL}),
    (S.AWAITING_APPROVAL, SessionOperation.APPROVE): frozenset({S.APPROVED}),
    (S.AWAITING_APPROVAL, SessionOperation.REJECT): frozenset({S.REJECTED}),
    (S.APPROVED, SessionOperation.EXECUTE): frozenset({S.EXECUTING}),
    (S.EXECUTING, SessionOperation.FINISH_EXECUTE): frozenset({S.COMPLETED, S.COMPLETED_WITH_ERRORS, S.FAILED}),
    **{(status, SessionOperation.CANCEL): frozenset({S.CANCELLED}) for status in _CANCELLABLE},
}


def allowed_targets(status: ImportSessionStatus, operation: SessionOperation) -> frozenset[ImportSessionStatus]:
    return TRANSITIONS.get((status, operation), frozenset())


def required_statuses(operation: SessionOperation) -> Tuple[ImportSessionStatus, ...]:
    """Statuses from which ``operation`` is legal, in lifecycle order."""

    sources = {status for status, op in TRANSITIONS if op is operation}
    return tuple(status for status in S if status in sources)


def ensure_allowed(import_session: ImportSession, operation: SessionOperation) -> frozenset[ImportSessionStatus]:
    """Raise ``SessionStateError`` unless ``operation`` is legal from the session's status."""

    targets = allowed_targets(import_session.status, operation)
    if not targets:
        raise SessionStateError(
            session_id=import_session.id,
            operation=operation.value,
            current_status=import_session.status,
            required_statuses=required_statuses(operation),
        )
    return targets


class SessionStateMachine:
    """Persist status transitions with an atomic compare-and-set on ``status``."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def transition(
        self,
        import_session: ImportSession,
        operation: SessionOperation,
        target: ImportSessionStatus,
        *,
        commit: bool = True,
        **changes: Any,
    ) -> ImportSession:
        """
        Move ``import_session`` to ``target`` and apply ``changes`` in the same UPDATE.

        The UPDATE only matches while the stored status still equals the status
        this caller read. Losing that race raises ``SessionStateError`` carrying
        the status the winner left behind.
        """

        expected = import_session.status
        targets = ensure_allowed(import_session, operation)
        if target not in targets:
            raise ValueError(f"{operation.value} cannot move a session from {expected.value} to {target.value}.")

        statement = (
            update(ImportSession)
            .where(ImportSession.id == import_session.id, ImportSession.status == expected)
            .values(status=target, **changes)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        if result.rowcount != 1:
            self.session.rollback()
            self.session.refresh(import_session)
            raise SessionStateError(
                session_id=import_session.id,
                operation=operation.value,
                current_status=import_session.status,
                required_statuses=required_statuses(operation),
            )

        if commit:
            self.session.commit()
        self.session.refresh(import_session)

        if has_app_context():
            current_app.logger.info(
                "Import session %s moved %s -> %s",
                import_session.id,
                expected.value,
                target.value,
                extra={
                    "import_session_id": import_session.id,
                    "import_operation": operation.value,
                    "import_status": target.value,
                },
            )
        return import_session
