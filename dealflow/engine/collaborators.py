"""
Contracts for the collaborators the engine writes through and reports to.

The engine never talks to storage or a UI directly: a writer performs the
commands, a notifier surfaces their outcome to the operator.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from .models import Opportunity

logger = logging.getLogger(__name__)


class WriteError(RuntimeError):
    """A write command was rejected (network failure, server rejection, missing row)."""


class OpportunityWriter(Protocol):
    async def fetch_opportunities(self, company_id: str) -> list[Opportunity]: ...

    async def move_stage(self, opportunity_id: str, stage: str, actor_id: Optional[str]) -> None: ...

    async def update_fields(self, opportunity_id: str, fields: dict[str, Any]) -> None: ...

    async def create_opportunity(self, payload: dict[str, Any]) -> str: ...


class Notifier(Protocol):
    def success(self, title: str, description: Optional[str] = None) -> None: ...

    def error(self, title: str, description: Optional[str] = None) -> None: ...


class LoggingNotifier:
    """Default notifier when no presentation layer is attached."""

    def success(self, title: str, description: Optional[str] = None) -> None:
        logger.info(json.dumps({"event": "notify_success", "title": title, "description": description}))

    def error(self, title: str, description: Optional[str] = None) -> None:
        logger.warning(json.dumps({"event": "notify_error", "title": title, "description": description}))


class CollectingNotifier(LoggingNotifier):
    """Keeps notifications so a request handler can hand them back to the client."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def success(self, title: str, description: Optional[str] = None) -> None:
        super().success(title, description)
        self.messages.append({"level": "success", "title": title, "description": description})

    def error(self, title: str, description: Optional[str] = None) -> None:
        super().error(title, description)
        self.messages.append({"level": "error", "title": title, "description": description})
