"""
Opportunity records and the ephemeral value objects that flow through the
transition engine.

Records are supplied by the data layer (database rows or CRM payloads) and are
never mutated here; every change goes through a writer command followed by a
refetch.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from . import stages


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _pick(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        txt = value.strip()
        if txt.endswith("Z"):
            txt = txt[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(txt)
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def parse_amount(text: Optional[str]) -> Optional[float]:
    """Parse operator-typed money input. Blank, non-numeric or non-finite input gives None."""
    if text is None:
        return None
    txt = str(text).strip().replace(",", "")
    if txt.startswith("$"):
        txt = txt[1:]
    if not txt:
        return None
    return to_float(txt)


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class Opportunity:
    id: str
    stage: str
    title: str
    company_id: Optional[str] = None
    client_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    estimated_value: Optional[float] = None
    actual_value: Optional[float] = None
    win_probability: int = 0
    lost_reason: Optional[str] = None
    lost_notes: Optional[str] = None
    source: Optional[str] = None
    stage_entered_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    next_follow_up_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Opportunity":
        """Build from a database row (snake_case) or an API payload (camelCase)."""
        opp_id = _pick(record, "id", "opportunity_id", "opportunityId")
        if opp_id is None:
            raise ValueError("Opportunity record is missing an id")
        stage = _pick(record, "stage") or stages.NEW_LEAD
        win_prob = _pick(record, "win_probability", "winProbability")
        source = _clean_str(_pick(record, "source"))
        return cls(
            id=str(opp_id),
            stage=str(stage),
            title=str(_pick(record, "title") or ""),
            company_id=_clean_str(_opt_str(_pick(record, "company_id", "companyId"))),
            client_id=_clean_str(_opt_str(_pick(record, "client_id", "clientId"))),
            contact_name=_clean_str(_pick(record, "contact_name", "contactName")),
            contact_email=_clean_str(_pick(record, "contact_email", "contactEmail")),
            contact_phone=_clean_str(_pick(record, "contact_phone", "contactPhone")),
            address=_clean_str(_pick(record, "address")),
            estimated_value=to_float(_pick(record, "estimated_value", "estimatedValue")),
            actual_value=to_float(_pick(record, "actual_value", "actualValue")),
            win_probability=int(to_float(win_prob) or 0),
            lost_reason=_clean_str(_pick(record, "lost_reason", "lostReason")),
            lost_notes=_clean_str(_pick(record, "lost_notes", "lostNotes")),
            source=source if source in stages.OPPORTUNITY_SOURCES else None,
            stage_entered_at=_parse_dt(_pick(record, "stage_entered_at", "stageEnteredAt")),
            last_activity_at=_parse_dt(_pick(record, "last_activity_at", "lastActivityAt")),
            next_follow_up_at=_parse_dt(_pick(record, "next_follow_up_at", "nextFollowUpAt")),
            created_at=_parse_dt(_pick(record, "created_at", "createdAt")),
            updated_at=_parse_dt(_pick(record, "updated_at", "updatedAt")),
            deleted_at=_parse_dt(_pick(record, "deleted_at", "deletedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage,
            "title": self.title,
            "company_id": self.company_id,
            "client_id": self.client_id,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "estimated_value": self.estimated_value,
            "actual_value": self.actual_value,
            "win_probability": self.win_probability,
            "lost_reason": self.lost_reason,
            "lost_notes": self.lost_notes,
            "source": self.source,
            "stage_entered_at": self.stage_entered_at.isoformat() if self.stage_entered_at else None,
            "days_in_stage": days_in_stage(self),
        }


@dataclass(frozen=True)
class TransitionRequest:
    opportunity_id: str
    from_stage: str
    to_stage: str
    # Carried for notification text only
    title: str = ""

    @property
    def is_noop(self) -> bool:
        return self.from_stage == self.to_stage


@dataclass(frozen=True)
class CreateRequest:
    company_id: str
    title: str
    contact_name: str
    stage: str
    estimated_value: Optional[float] = None
    source: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "company_id": self.company_id,
            "title": self.title,
            "contact_name": self.contact_name,
            "stage": self.stage,
        }
        if self.estimated_value is not None:
            payload["estimated_value"] = self.estimated_value
        if self.source:
            payload["source"] = self.source
        return payload


@dataclass(frozen=True)
class ConfirmationData:
    actual_value: Optional[float] = None
    lost_reason: Optional[str] = None
    lost_notes: Optional[str] = None


def build_transition_request(opportunity: Opportunity, to_stage: Any) -> Optional[TransitionRequest]:
    """
    Resolve a candidate stage change for one opportunity.

    Returns None when the target is not a registry stage, when the move is a
    no-op, or when the opportunity already sits in a terminal stage.
    """
    if not stages.is_stage(to_stage):
        return None
    if opportunity.stage == to_stage:
        return None
    if stages.is_terminal(opportunity.stage):
        return None
    return TransitionRequest(
        opportunity_id=opportunity.id,
        from_stage=opportunity.stage,
        to_stage=to_stage,
        title=opportunity.title,
    )


def visible_opportunities(opportunities: Iterable[Opportunity]) -> list[Opportunity]:
    """Drop soft-deleted records; every board view starts from this set."""
    return [o for o in opportunities if o.deleted_at is None]


def find_opportunity(opportunities: Iterable[Opportunity], opportunity_id: str) -> Optional[Opportunity]:
    for opp in opportunities:
        if opp.id == opportunity_id:
            return opp
    return None


def days_in_stage(opportunity: Opportunity, now: Optional[datetime] = None) -> int:
    if opportunity.stage_entered_at is None:
        return 0
    now = now or _now()
    delta = now - opportunity.stage_entered_at
    return max(0, math.floor(delta.total_seconds() / 86400))


def is_stale(opportunity: Opportunity, threshold_days: int = 7, now: Optional[datetime] = None) -> bool:
    """True when nothing happened on the deal for threshold_days (falls back to stage entry)."""
    reference = opportunity.last_activity_at or opportunity.stage_entered_at
    if reference is None:
        return False
    now = now or _now()
    return (now - reference).total_seconds() / 86400 >= threshold_days


def weighted_value(opportunity: Opportunity) -> float:
    if not opportunity.estimated_value:
        return 0.0
    return round(opportunity.estimated_value * opportunity.win_probability / 100, 2)
