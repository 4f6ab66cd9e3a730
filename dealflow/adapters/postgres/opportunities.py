"""
Postgres-backed opportunity writer (pipeline.opportunities).

Every stage move also appends an immutable pipeline.stage_transitions row with
the time spent in the previous stage. The history insert is secondary: if it
fails the move itself still stands.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

from dealflow.engine import stages
from dealflow.engine.collaborators import WriteError
from dealflow.engine.models import Opportunity

logger = logging.getLogger(__name__)

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

# Columns an update_fields() call may touch
UPDATABLE_FIELDS: frozenset[str] = frozenset([
    "title",
    "contact_name",
    "contact_email",
    "contact_phone",
    "address",
    "estimated_value",
    "actual_value",
    "lost_reason",
    "lost_notes",
    "source",
    "next_follow_up_at",
])

# ---------------------------------------------------------------------------
# SQL: reads
# ---------------------------------------------------------------------------

LIST_OPPORTUNITIES_SQL = """
SELECT id::text, company_id::text, client_id::text,
       title, contact_name, contact_email, contact_phone, address,
       stage, source, estimated_value, actual_value, win_probability,
       lost_reason, lost_notes,
       stage_entered_at, last_activity_at, next_follow_up_at,
       created_at, updated_at, deleted_at
FROM pipeline.opportunities
WHERE company_id = $1::uuid
  AND deleted_at IS NULL
ORDER BY created_at DESC;
"""

LOAD_STAGE_SQL = """
SELECT company_id::text, stage, stage_entered_at
FROM pipeline.opportunities
WHERE id = $1::uuid
  AND deleted_at IS NULL;
"""

# ---------------------------------------------------------------------------
# SQL: writes
# ---------------------------------------------------------------------------

MOVE_STAGE_SQL = """
UPDATE pipeline.opportunities
SET stage = $2::text,
    stage_entered_at = $3::timestamptz,
    win_probability = $4::int,
    actual_close_date = CASE WHEN $5::bool THEN $3::timestamptz ELSE NULL END,
    updated_at = now()
WHERE id = $1::uuid
  AND deleted_at IS NULL;
"""

INSERT_TRANSITION_SQL = """
INSERT INTO pipeline.stage_transitions (
    company_id, opportunity_id,
    from_stage, to_stage,
    transitioned_at, transitioned_by, duration_in_stage_ms
)
VALUES (
    $1::uuid, $2::uuid,
    $3::text, $4::text,
    $5::timestamptz, $6::text, $7::bigint
);
"""

INSERT_OPPORTUNITY_SQL = """
INSERT INTO pipeline.opportunities (
    company_id, title, contact_name, stage, source,
    estimated_value, win_probability, stage_entered_at
)
VALUES (
    $1::uuid, $2::text, $3::text, $4::text, $5::text,
    $6::numeric, $7::int, now()
)
RETURNING id::text;
"""


def _affected(status: str) -> int:
    # asyncpg returns e.g. "UPDATE 1"
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


class PostgresOpportunityStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def fetch_opportunities(self, company_id: str) -> list[Opportunity]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(LIST_OPPORTUNITIES_SQL, company_id)
        except DB_ERRORS as e:
            raise WriteError(f"Failed to fetch opportunities for company {company_id}: {e}") from e
        return [Opportunity.from_record(dict(r)) for r in rows]

    async def move_stage(self, opportunity_id: str, stage: str, actor_id: Optional[str]) -> None:
        """
        Move an opportunity to a new stage.

        1. Load the current stage and stage entry time.
        2. Update stage, stage_entered_at and the stage's default win probability.
        3. Append a stage_transitions row with the duration in the previous stage.
        """
        if not stages.is_stage(stage):
            raise WriteError(f"Unknown stage: {stage}")

        now = datetime.now(timezone.utc)
        try:
            async with self.pool.acquire() as conn:
                current = await conn.fetchrow(LOAD_STAGE_SQL, opportunity_id)
                if not current:
                    raise WriteError(f"Opportunity {opportunity_id} not found")

                status = await conn.execute(
                    MOVE_STAGE_SQL,
                    opportunity_id,
                    stage,
                    now,
                    stages.win_probability(stage),
                    stages.is_terminal(stage),
                )
                if _affected(status) == 0:
                    raise WriteError(f"Opportunity {opportunity_id} not found")

                await self._record_transition(conn, current, opportunity_id, stage, now, actor_id)
        except DB_ERRORS as e:
            raise WriteError(f"Failed to move opportunity {opportunity_id} to stage {stage}: {e}") from e

    async def _record_transition(
        self,
        conn: asyncpg.Connection,
        current: Any,
        opportunity_id: str,
        stage: str,
        now: datetime,
        actor_id: Optional[str],
    ) -> None:
        entered_at = current["stage_entered_at"]
        duration_ms = int((now - entered_at).total_seconds() * 1000) if entered_at else None
        try:
            await conn.execute(
                INSERT_TRANSITION_SQL,
                current["company_id"],
                opportunity_id,
                current["stage"],
                stage,
                now,
                actor_id,
                duration_ms,
            )
        except DB_ERRORS as e:
            # Log but don't fail: the opportunity was already moved
            logger.error(json.dumps({
                "event": "stage_transition_record_failed",
                "opportunity_id": opportunity_id,
                "to_stage": stage,
                "error": str(e),
            }))

    async def update_fields(self, opportunity_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise WriteError(f"Fields not updatable: {sorted(unknown)}")
        if not fields:
            return

        columns = sorted(fields)
        assignments = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(columns))
        sql = (
            f"UPDATE pipeline.opportunities SET {assignments}, updated_at = now() "
            "WHERE id = $1::uuid AND deleted_at IS NULL;"
        )
        try:
            async with self.pool.acquire() as conn:
                status = await conn.execute(sql, opportunity_id, *[fields[c] for c in columns])
        except DB_ERRORS as e:
            raise WriteError(f"Failed to update opportunity {opportunity_id}: {e}") from e
        if _affected(status) == 0:
            raise WriteError(f"Opportunity {opportunity_id} not found")

    async def create_opportunity(self, payload: dict[str, Any]) -> str:
        stage = payload.get("stage") or stages.NEW_LEAD
        try:
            async with self.pool.acquire() as conn:
                new_id = await conn.fetchval(
                    INSERT_OPPORTUNITY_SQL,
                    payload["company_id"],
                    payload["title"],
                    payload.get("contact_name"),
                    stage,
                    payload.get("source"),
                    payload.get("estimated_value"),
                    stages.win_probability(stage),
                )
        except DB_ERRORS as e:
            raise WriteError(f"Failed to create opportunity: {e}") from e
        return new_id
