"""
Pipeline schema migration: run locally with an owner DATABASE_URL.

Usage:
  python scripts/pipeline_migrate.py

Creates:
  - pipeline schema
  - pipeline.opportunities table
  - pipeline.stage_transitions table (append-only stage history)
  - indexes for the board query and per-opportunity history
"""
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

import asyncpg

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    print("ERROR: DATABASE_URL not set")
    sys.exit(1)

STAGES = ("new_lead", "contacted", "quote_sent", "negotiating", "won", "lost")
STAGE_CHECK = ", ".join(f"'{s}'" for s in STAGES)


async def migrate():
    conn = await asyncpg.connect(DATABASE_URL)
    try:
        print("Running pipeline migration...")

        await conn.execute("CREATE SCHEMA IF NOT EXISTS pipeline")
        print("OK schema pipeline")

        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS pipeline.opportunities (
                id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                company_id         UUID NOT NULL,
                client_id          UUID,
                title              TEXT NOT NULL,
                contact_name       TEXT,
                contact_email      TEXT,
                contact_phone      TEXT,
                address            TEXT,
                stage              TEXT NOT NULL DEFAULT 'new_lead'
                                   CHECK (stage IN ({STAGE_CHECK})),
                source             TEXT,
                estimated_value    NUMERIC(12, 2),
                actual_value       NUMERIC(12, 2),
                win_probability    INT NOT NULL DEFAULT 10,
                lost_reason        TEXT,
                lost_notes         TEXT,
                stage_entered_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
                last_activity_at   TIMESTAMPTZ,
                next_follow_up_at  TIMESTAMPTZ,
                actual_close_date  TIMESTAMPTZ,
                created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
                deleted_at         TIMESTAMPTZ
            )
        """)
        print("OK pipeline.opportunities")

        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS pipeline.stage_transitions (
                id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                company_id            UUID NOT NULL,
                opportunity_id        UUID NOT NULL REFERENCES pipeline.opportunities(id),
                from_stage            TEXT CHECK (from_stage IN ({STAGE_CHECK})),
                to_stage              TEXT NOT NULL CHECK (to_stage IN ({STAGE_CHECK})),
                transitioned_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
                transitioned_by       TEXT,
                duration_in_stage_ms  BIGINT
            )
        """)
        print("OK pipeline.stage_transitions")

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS opportunities_company_stage_idx
            ON pipeline.opportunities (company_id, stage)
            WHERE deleted_at IS NULL
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS stage_transitions_opportunity_idx
            ON pipeline.stage_transitions (opportunity_id, transitioned_at)
        """)
        print("OK indexes")

        print("\nPipeline migration complete.")
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(migrate())
