from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, FiniteFloat

from .adapters.ghl.opportunities import GHLOpportunityClient
from .adapters.postgres.opportunities import PostgresOpportunityStore
from .config import settings
from .db import get_pool
from .engine import stages
from .engine.board import column_value
from .engine.collaborators import CollectingNotifier, OpportunityWriter, WriteError
from .engine.gate import PendingConfirmation
from .engine.models import ConfirmationData, Opportunity, find_opportunity, is_stale
from .engine.orchestrator import CommitResult, MutationOrchestrator
from .engine.quick_add import compose_quick_add
from .engine.session import BoardSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])


async def get_writer() -> OpportunityWriter:
    if settings.write_backend == "ghl":
        return GHLOpportunityClient.from_settings()
    pool = await get_pool()
    return PostgresOpportunityStore(pool)


class StageChangeRequest(BaseModel):
    company_id: str
    to_stage: str
    actual_value: Optional[FiniteFloat] = None
    lost_reason: Optional[str] = None
    lost_notes: Optional[str] = None


class AdvanceRequest(BaseModel):
    company_id: str


class QuickAddRequest(BaseModel):
    contact_name: str = ""
    title: Optional[str] = None
    estimated_value: Optional[str] = None
    source: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _session(
    writer: OpportunityWriter, actor_id: Optional[str], company_id: str
) -> tuple[BoardSession, CollectingNotifier]:
    notifier = CollectingNotifier()
    orchestrator = MutationOrchestrator(writer, notifier)
    return BoardSession(orchestrator, actor_id=actor_id, company_id=company_id), notifier


async def _load(writer: OpportunityWriter, company_id: str) -> list[Opportunity]:
    try:
        return await writer.fetch_opportunities(company_id)
    except WriteError as e:
        raise HTTPException(status_code=502, detail=str(e))


async def _load_one(writer: OpportunityWriter, company_id: str, opportunity_id: str) -> Opportunity:
    opportunity = find_opportunity(await _load(writer, company_id), opportunity_id)
    if opportunity is None or opportunity.is_deleted:
        raise HTTPException(status_code=404, detail="Opportunity not found")
    return opportunity


def _card(opp: Opportunity) -> dict[str, Any]:
    out = opp.to_dict()
    out["stale"] = stages.is_active(opp.stage) and is_stale(opp, settings.stale_threshold_days)
    return out


def _commit_response(result: CommitResult, stage: str, notifier: CollectingNotifier) -> dict[str, Any]:
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error or "Write failed")
    return {
        "ok": True,
        "opportunity_id": result.opportunity_id,
        "stage": stage,
        "fields_updated": result.fields_updated,
        "partial": result.partial,
        "notifications": notifier.messages,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/companies/{company_id}/pipeline")
async def get_pipeline(
    company_id: str,
    q: Optional[str] = None,
    stage: Optional[str] = None,
    writer: OpportunityWriter = Depends(get_writer),
) -> dict[str, Any]:
    if stage and not stages.is_stage(stage):
        raise HTTPException(status_code=422, detail=f"Unknown stage: {stage}")

    session, _ = _session(writer, None, company_id)
    view = session.board(await _load(writer, company_id), q, stage)

    columns = []
    for slug, bucket in view.buckets.items():
        columns.append({
            "stage": slug,
            "name": stages.display_name(slug),
            "color": stages.color(slug),
            "terminal": stages.is_terminal(slug),
            "count": len(bucket),
            "value": column_value(bucket),
            "opportunities": [_card(o) for o in bucket],
        })
    return {"company_id": company_id, "columns": columns, "metrics": view.metrics.to_dict()}


@router.post("/opportunities/{opportunity_id}/stage")
async def change_stage(
    opportunity_id: str,
    body: StageChangeRequest,
    writer: OpportunityWriter = Depends(get_writer),
    x_actor_id: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    if not stages.is_stage(body.to_stage):
        raise HTTPException(status_code=422, detail=f"Unknown stage: {body.to_stage}")

    opportunity = await _load_one(writer, body.company_id, opportunity_id)
    session, notifier = _session(writer, x_actor_id, body.company_id)

    outcome = await session.request_transition(opportunity, body.to_stage)
    if outcome is None:
        raise HTTPException(
            status_code=409,
            detail=f"No transition from {opportunity.stage} to {body.to_stage}",
        )

    if isinstance(outcome, PendingConfirmation):
        data = ConfirmationData(
            actual_value=body.actual_value,
            lost_reason=body.lost_reason,
            lost_notes=body.lost_notes,
        )
        result = await session.confirm(data)
        if result is None:
            session.cancel_confirmation()
            raise HTTPException(status_code=422, detail="lost_reason is required to mark a deal lost")
        outcome = result

    logger.info(json.dumps({
        "event": "stage_change_request",
        "opportunity_id": opportunity_id,
        "to_stage": body.to_stage,
        "ok": outcome.ok,
    }))
    return _commit_response(outcome, body.to_stage, notifier)


@router.post("/opportunities/{opportunity_id}/advance")
async def advance_stage(
    opportunity_id: str,
    body: AdvanceRequest,
    writer: OpportunityWriter = Depends(get_writer),
    x_actor_id: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    opportunity = await _load_one(writer, body.company_id, opportunity_id)
    target = stages.next_stage(opportunity.stage)
    if target is None:
        raise HTTPException(status_code=409, detail=f"No next stage after {opportunity.stage}")

    session, notifier = _session(writer, x_actor_id, body.company_id)
    outcome = await session.advance(opportunity)
    if not isinstance(outcome, CommitResult):
        raise HTTPException(status_code=409, detail=f"No next stage after {opportunity.stage}")
    return _commit_response(outcome, target, notifier)


@router.post("/companies/{company_id}/opportunities/quick-add")
async def quick_add(
    company_id: str,
    body: QuickAddRequest,
    writer: OpportunityWriter = Depends(get_writer),
    x_actor_id: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    create = compose_quick_add(body.contact_name, body.title, body.estimated_value, company_id, body.source)
    if create is None:
        raise HTTPException(status_code=422, detail="contact_name is required")

    session, notifier = _session(writer, x_actor_id, company_id)
    result = await session.orchestrator.commit_create(create, x_actor_id)
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error or "Create failed")
    return {
        "ok": True,
        "id": result.opportunity_id,
        "title": create.title,
        "stage": create.stage,
        "estimated_value": create.estimated_value,
        "notifications": notifier.messages,
    }
