"""
Mutation orchestrator: the only path from the engine to the write side.

Nothing is assigned locally before a command succeeds. The board picks up the
new placement on the next refetch, so a failed command needs no rollback.
Within one confirmed commit the stage move is issued before the supplemental
field update; the update is best effort and never undoes the move.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from . import stages
from .collaborators import LoggingNotifier, Notifier, OpportunityWriter, WriteError
from .models import CreateRequest, TransitionRequest
from .trace_logger import log_commit

logger = logging.getLogger(__name__)

RefreshHook = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class CommitResult:
    ok: bool
    opportunity_id: Optional[str] = None
    stage_moved: bool = False
    # None when no supplemental update was attempted
    fields_updated: Optional[bool] = None
    error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.stage_moved and self.fields_updated is False


class MutationOrchestrator:
    def __init__(
        self,
        writer: OpportunityWriter,
        notifier: Optional[Notifier] = None,
        refresh: Optional[RefreshHook] = None,
    ) -> None:
        self.writer = writer
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.refresh = refresh

    async def commit_direct(self, request: TransitionRequest, actor_id: Optional[str]) -> CommitResult:
        try:
            return await self._move(request, actor_id, action="move_stage")
        finally:
            await self._refresh()

    async def commit_confirmed(
        self,
        request: TransitionRequest,
        actor_id: Optional[str],
        supplemental: Optional[dict[str, Any]] = None,
    ) -> CommitResult:
        fields = {k: v for k, v in (supplemental or {}).items() if v not in (None, "")}
        try:
            moved = await self._move(request, actor_id, action="move_stage_confirmed", fields=fields)
            if not moved.ok or not fields:
                return moved

            try:
                await self.writer.update_fields(request.opportunity_id, fields)
            except WriteError as e:
                # Stage change stays committed; the supplemental fields may remain unset.
                logger.warning(json.dumps({
                    "event": "supplemental_update_failed",
                    "opportunity_id": request.opportunity_id,
                    "fields": sorted(fields),
                    "error": str(e),
                }))
                self.notifier.error("Failed to save deal details", str(e))
                return CommitResult(
                    ok=True,
                    opportunity_id=request.opportunity_id,
                    stage_moved=True,
                    fields_updated=False,
                    error=str(e),
                )

            return CommitResult(
                ok=True,
                opportunity_id=request.opportunity_id,
                stage_moved=True,
                fields_updated=True,
            )
        finally:
            await self._refresh()

    async def commit_create(self, create: CreateRequest, actor_id: Optional[str]) -> CommitResult:
        try:
            try:
                new_id = await self.writer.create_opportunity(create.to_payload())
            except WriteError as e:
                log_commit(action="create", opportunity_id=None, actor_id=actor_id, ok=False,
                           to_stage=create.stage, error=str(e))
                self.notifier.error("Failed to add lead", str(e))
                return CommitResult(ok=False, error=str(e))

            log_commit(action="create", opportunity_id=new_id, actor_id=actor_id, ok=True, to_stage=create.stage)
            self.notifier.success("Lead added", create.title)
            return CommitResult(ok=True, opportunity_id=new_id)
        finally:
            await self._refresh()

    async def _move(
        self,
        request: TransitionRequest,
        actor_id: Optional[str],
        *,
        action: str,
        fields: Optional[dict[str, Any]] = None,
    ) -> CommitResult:
        stage_name = stages.display_name(request.to_stage)
        try:
            await self.writer.move_stage(request.opportunity_id, request.to_stage, actor_id)
        except WriteError as e:
            log_commit(action=action, opportunity_id=request.opportunity_id, actor_id=actor_id, ok=False,
                       from_stage=request.from_stage, to_stage=request.to_stage, error=str(e))
            self.notifier.error(f"Failed to move opportunity to {stage_name}", str(e))
            return CommitResult(ok=False, opportunity_id=request.opportunity_id, error=str(e))

        log_commit(action=action, opportunity_id=request.opportunity_id, actor_id=actor_id, ok=True,
                   from_stage=request.from_stage, to_stage=request.to_stage, fields=fields)
        self.notifier.success(f"Moved to {stage_name}", request.title or None)
        return CommitResult(ok=True, opportunity_id=request.opportunity_id, stage_moved=True)

    async def _refresh(self) -> None:
        if self.refresh is None:
            return
        try:
            await self.refresh()
        except Exception as e:
            # The write already settled; the next refetch will catch up.
            logger.error(json.dumps({"event": "refresh_after_write_failed", "error": str(e)}))
