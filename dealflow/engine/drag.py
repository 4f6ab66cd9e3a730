"""
Drag session controller.

Tracks at most one pointer-drag at a time (Idle / Dragging(id)) and turns a
drop into a TransitionRequest. Drops that cannot produce a real stage change
are discarded silently: they are UI glitches, not operator errors.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

from .models import Opportunity, TransitionRequest, build_transition_request, find_opportunity
from . import stages

logger = logging.getLogger(__name__)


class DragSessionController:
    def __init__(self) -> None:
        self._active_id: Optional[str] = None

    @property
    def active_opportunity_id(self) -> Optional[str]:
        return self._active_id

    @property
    def is_dragging(self) -> bool:
        return self._active_id is not None

    def start_drag(self, opportunity_id: str) -> None:
        # Single pointer: last pointer-down wins.
        if self._active_id is not None and self._active_id != opportunity_id:
            logger.debug(json.dumps({
                "event": "drag_replaced",
                "previous_id": self._active_id,
                "opportunity_id": opportunity_id,
            }))
        self._active_id = opportunity_id

    def cancel_drag(self) -> None:
        self._active_id = None

    def complete_drag(
        self,
        target_stage: Any,
        opportunities: Iterable[Opportunity],
    ) -> Optional[TransitionRequest]:
        """
        End the drag and resolve the drop.

        Returns None while idle, for a target outside the registry, when the
        dragged id is no longer in the current set, and for no-op moves.
        """
        tracked = self._active_id
        self._active_id = None
        if tracked is None:
            return None

        if not stages.is_stage(target_stage):
            _log_discard("invalid_target", tracked, target_stage)
            return None

        opportunity = find_opportunity(opportunities, tracked)
        if opportunity is None:
            _log_discard("opportunity_missing", tracked, target_stage)
            return None

        request = build_transition_request(opportunity, target_stage)
        if request is None:
            reason = "noop" if opportunity.stage == target_stage else "terminal_origin"
            _log_discard(reason, tracked, target_stage)
        return request


def _log_discard(reason: str, opportunity_id: str, target: Any) -> None:
    logger.debug(json.dumps({
        "event": "drag_discarded",
        "reason": reason,
        "opportunity_id": opportunity_id,
        "target": str(target),
    }))
