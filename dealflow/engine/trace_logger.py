"""
Structured JSON logging for stage commits.

One flat record per commit attempt (move, confirmed move, create), written to
a dedicated logger so it can be shipped separately from operational logs.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Dedicated logger for commit traces (separate from operational logs)
_trace_logger: Optional[logging.Logger] = None


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # record.msg is already a dict for trace records
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, default=str, ensure_ascii=False)
        return super().format(record)


def _get_trace_logger() -> logging.Logger:
    global _trace_logger
    if _trace_logger is not None:
        return _trace_logger

    _trace_logger = logging.getLogger("dealflow.trace")
    _trace_logger.setLevel(logging.INFO)
    _trace_logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(JsonFormatter())
    _trace_logger.addHandler(handler)

    return _trace_logger


def log_commit(
    *,
    action: str,
    opportunity_id: Optional[str],
    actor_id: Optional[str],
    ok: bool,
    from_stage: Optional[str] = None,
    to_stage: Optional[str] = None,
    fields: Optional[dict[str, Any]] = None,
    error: Optional[str] = None,
) -> dict[str, Any]:
    """
    Log a single structured record for a commit attempt and return it.

    Args:
        action: "move_stage", "move_stage_confirmed" or "create"
        opportunity_id: Target opportunity (None for a create that failed)
        actor_id: Operator who triggered the command
        ok: Whether the primary command succeeded
        from_stage / to_stage: Transition, when there is one
        fields: Supplemental field names written (values are not logged)
        error: Failure message of the first failed command
    """
    record: dict[str, Any] = {
        "type": "pipeline_commit",
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "opportunity_id": opportunity_id,
        "actor_id": actor_id,
        "ok": ok,
    }

    if from_stage is not None or to_stage is not None:
        record["transition"] = {"from": from_stage, "to": to_stage}

    if fields:
        record["fields"] = sorted(fields)

    if error is not None:
        record["error"] = error

    _get_trace_logger().info(record)
    return record
