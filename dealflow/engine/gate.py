"""
Transition gate and the confirmation step for terminal moves.

Moves into Won or Lost are irreversible here and must capture supplemental
data (final value / loss reason) before anything is written. Every other move
commits directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

from . import stages
from .models import ConfirmationData, Opportunity, TransitionRequest, to_float

TransitionType = Literal["won", "lost"]

_CONFIRMATION_TYPES: dict[str, TransitionType] = {
    stages.WON: "won",
    stages.LOST: "lost",
}


@dataclass(frozen=True)
class Direct:
    request: TransitionRequest


@dataclass(frozen=True)
class RequiresConfirmation:
    transition_type: TransitionType
    request: TransitionRequest


GateDecision = Union[Direct, RequiresConfirmation]


@dataclass(frozen=True)
class PendingConfirmation:
    transition_type: TransitionType
    opportunity: Opportunity
    request: TransitionRequest


def evaluate(request: TransitionRequest) -> GateDecision:
    transition_type = _CONFIRMATION_TYPES.get(request.to_stage)
    if transition_type is not None:
        return RequiresConfirmation(transition_type, request)
    return Direct(request)


def open_confirmation(decision: RequiresConfirmation, opportunity: Opportunity) -> PendingConfirmation:
    return PendingConfirmation(
        transition_type=decision.transition_type,
        opportunity=opportunity,
        request=decision.request,
    )


def default_confirmation(pending: PendingConfirmation) -> ConfirmationData:
    """Initial dialog values: a won deal starts from its estimated value."""
    if pending.transition_type == "won":
        return ConfirmationData(actual_value=pending.opportunity.estimated_value)
    return ConfirmationData()


def can_confirm(pending: PendingConfirmation, data: ConfirmationData) -> bool:
    """Submission predicate for the confirmation dialog. Lost needs a reason."""
    if pending.transition_type == "lost":
        return bool((data.lost_reason or "").strip())
    return True


def supplemental_fields(pending: PendingConfirmation, data: ConfirmationData) -> dict[str, Any]:
    """Only the non-empty fields that belong to this transition type."""
    fields: dict[str, Any] = {}
    if pending.transition_type == "won":
        actual_value = to_float(data.actual_value)
        if actual_value is not None:
            fields["actual_value"] = actual_value
        return fields

    reason = (data.lost_reason or "").strip()
    notes = (data.lost_notes or "").strip()
    if reason:
        fields["lost_reason"] = reason
    if notes:
        fields["lost_notes"] = notes
    return fields
