"""
Board session: the explicit state machine behind one operator's pipeline board.

Holds the only mutable engine state (one drag session, at most one pending
confirmation). Company and actor are fixed per session and passed down into
every command; nothing is read from ambient globals.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from . import stages
from .board import filter_opportunities, group_by_stage, resolve_display_name
from .drag import DragSessionController
from .gate import (
    Direct,
    PendingConfirmation,
    RequiresConfirmation,
    can_confirm,
    evaluate,
    open_confirmation,
    supplemental_fields,
)
from .metrics import PipelineMetrics, compute_metrics
from .models import (
    ConfirmationData,
    Opportunity,
    TransitionRequest,
    build_transition_request,
    find_opportunity,
    visible_opportunities,
)
from .orchestrator import CommitResult, MutationOrchestrator
from .quick_add import QuickAddComposer

logger = logging.getLogger(__name__)

TransitionOutcome = Union[CommitResult, PendingConfirmation, None]


@dataclass(frozen=True)
class BoardView:
    buckets: dict[str, list[Opportunity]]
    metrics: PipelineMetrics
    visible_count: int


class BoardSession:
    def __init__(self, orchestrator: MutationOrchestrator, *, actor_id: Optional[str], company_id: str) -> None:
        self.orchestrator = orchestrator
        self.actor_id = actor_id
        self.company_id = company_id
        self.drag = DragSessionController()
        self.pending: Optional[PendingConfirmation] = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def board(
        self,
        opportunities: Iterable[Opportunity],
        search_query: Optional[str] = None,
        stage_filter: Optional[str] = None,
        client_names: Optional[Mapping[str, str]] = None,
    ) -> BoardView:
        """Buckets and metrics derived from the same filtered set."""
        filtered = filter_opportunities(
            visible_opportunities(opportunities),
            search_query,
            stage_filter,
            lambda o: resolve_display_name(o, client_names),
        )
        return BoardView(
            buckets=group_by_stage(filtered),
            metrics=compute_metrics(filtered),
            visible_count=len(filtered),
        )

    # ------------------------------------------------------------------
    # Drag gesture
    # ------------------------------------------------------------------

    def start_drag(self, opportunity_id: str) -> None:
        self.drag.start_drag(opportunity_id)

    def cancel_drag(self) -> None:
        self.drag.cancel_drag()

    async def complete_drag(self, target_stage: object, opportunities: Iterable[Opportunity]) -> TransitionOutcome:
        current = visible_opportunities(opportunities)
        request = self.drag.complete_drag(target_stage, current)
        if request is None:
            return None
        opportunity = find_opportunity(current, request.opportunity_id)
        return await self._submit(request, opportunity)

    # ------------------------------------------------------------------
    # Explicit actions
    # ------------------------------------------------------------------

    async def request_transition(self, opportunity: Opportunity, to_stage: str) -> TransitionOutcome:
        request = build_transition_request(opportunity, to_stage)
        if request is None:
            return None
        return await self._submit(request, opportunity)

    async def advance(self, opportunity: Opportunity) -> TransitionOutcome:
        """Quick-advance to the next active stage; nothing past the last active stage."""
        target = stages.next_stage(opportunity.stage)
        if target is None:
            return None
        return await self.request_transition(opportunity, target)

    # ------------------------------------------------------------------
    # Confirmation dialog
    # ------------------------------------------------------------------

    def can_confirm(self, data: ConfirmationData) -> bool:
        return self.pending is not None and can_confirm(self.pending, data)

    async def confirm(self, data: ConfirmationData) -> Optional[CommitResult]:
        """Commit the pending terminal move. Returns None (pending kept) while validation fails."""
        pending = self.pending
        if pending is None:
            return None
        if not can_confirm(pending, data):
            return None

        self.pending = None
        return await self.orchestrator.commit_confirmed(
            pending.request,
            self.actor_id,
            supplemental_fields(pending, data),
        )

    def cancel_confirmation(self) -> None:
        if self.pending is not None:
            logger.debug(json.dumps({
                "event": "confirmation_cancelled",
                "opportunity_id": self.pending.request.opportunity_id,
                "transition_type": self.pending.transition_type,
            }))
        self.pending = None

    # ------------------------------------------------------------------
    # Quick add
    # ------------------------------------------------------------------

    def new_composer(self) -> QuickAddComposer:
        return QuickAddComposer(self.company_id)

    async def quick_add(self, composer: QuickAddComposer) -> Optional[CommitResult]:
        create = composer.compose()
        if create is None:
            return None
        result = await self.orchestrator.commit_create(create, self.actor_id)
        if result.ok:
            composer.open()
        return result

    # ------------------------------------------------------------------

    async def _submit(self, request: TransitionRequest, opportunity: Optional[Opportunity]) -> TransitionOutcome:
        decision = evaluate(request)
        if isinstance(decision, RequiresConfirmation):
            if opportunity is None:
                return None
            # A new terminal request replaces any dialog left open.
            self.pending = open_confirmation(decision, opportunity)
            return self.pending
        if isinstance(decision, Direct):
            return await self.orchestrator.commit_direct(decision.request, self.actor_id)
        raise TypeError(f"Unexpected gate decision: {decision!r}")
