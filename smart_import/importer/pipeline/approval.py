"""Approval gate: auto-approve confident, error-free sessions; otherwise queue for review."""

from __future__ import annotations

from dataclasses import dataclass

from smart_import.models.importer import ApprovalStatus, ImportSessionStatus

DEFAULT_AUTO_APPROVE_THRESHOLD = 95.0


@dataclass(frozen=True)
class ApprovalDecision:
    auto_approved: bool
    confidence: float
    error_count: int

    @property
    def status(self) -> ImportSessionStatus:
        return ImportSessionStatus.APPROVED if self.auto_approved else ImportSessionStatus.AWAITING_APPROVAL

    @property
    def approval_status(self) -> ApprovalStatus:
        return ApprovalStatus.AUTO_APPROVED if self.auto_approved else ApprovalStatus.PENDING

    @property
    def message(self) -> str:
        confidence = format_percent(self.confidence)
        if self.auto_approved:
            return f"Auto-approved: confidence {confidence}%, no validation errors."
        return f"Awaiting manual approval. Confidence: {confidence}%, errors: {self.error_count}."


def decide_approval(
    confidence: float | None,
    error_count: int,
    *,
    threshold: float = DEFAULT_AUTO_APPROVE_THRESHOLD,
) -> ApprovalDecision:
    """Auto-approve only when ``confidence >= threshold`` and there are no error-severity failures."""

    resolved_confidence = float(confidence or 0.0)
    auto = resolved_confidence >= threshold and error_count == 0
    return ApprovalDecision(auto_approved=auto, confidence=resolved_confidence, error_count=error_count)


def format_percent(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"
