"""
Canonical opportunity stages, ordering and display metadata.

Stages are string constants, not a Postgres ENUM.
Adding a new stage requires a code change here: the metadata table below must
cover every stage in PIPELINE_ORDER or the import fails.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Active stages in pipeline order
NEW_LEAD = "new_lead"
CONTACTED = "contacted"
QUOTE_SENT = "quote_sent"
NEGOTIATING = "negotiating"

# Terminal (reachable from any active stage)
WON = "won"
LOST = "lost"

ACTIVE_STAGES: tuple[str, ...] = (NEW_LEAD, CONTACTED, QUOTE_SENT, NEGOTIATING)
TERMINAL_STAGES: tuple[str, ...] = (WON, LOST)

# Board column order: active stages first, terminals last
PIPELINE_ORDER: tuple[str, ...] = ACTIVE_STAGES + TERMINAL_STAGES


@dataclass(frozen=True)
class StageInfo:
    slug: str
    name: str
    color: str
    position: int
    terminal: bool
    win_probability: int


STAGE_INFO: dict[str, StageInfo] = {
    NEW_LEAD: StageInfo(NEW_LEAD, "New Lead", "#BCBCBC", 0, False, 10),
    CONTACTED: StageInfo(CONTACTED, "Contacted", "#8195B5", 1, False, 25),
    QUOTE_SENT: StageInfo(QUOTE_SENT, "Quote Sent", "#B5A381", 2, False, 60),
    NEGOTIATING: StageInfo(NEGOTIATING, "Negotiating", "#B58289", 3, False, 75),
    WON: StageInfo(WON, "Won", "#9DB582", 4, True, 100),
    LOST: StageInfo(LOST, "Lost", "#6B7280", 5, True, 0),
}

_missing = set(PIPELINE_ORDER) ^ set(STAGE_INFO)
if _missing:
    raise RuntimeError(f"Stage metadata out of sync with PIPELINE_ORDER: {sorted(_missing)}")
for _i, _slug in enumerate(PIPELINE_ORDER):
    if STAGE_INFO[_slug].position != _i or STAGE_INFO[_slug].terminal != (_slug in TERMINAL_STAGES):
        raise RuntimeError(f"Stage metadata inconsistent for {_slug}")

# Options offered when a deal is marked lost
LOSS_REASONS: tuple[str, ...] = (
    "Price",
    "Timing",
    "Competition",
    "Scope",
    "No Response",
    "Other",
)

OPPORTUNITY_SOURCES: frozenset[str] = frozenset([
    "referral",
    "website",
    "email",
    "phone",
    "walk_in",
    "social_media",
    "repeat_client",
    "other",
])


def list_active_stages() -> list[str]:
    return list(ACTIVE_STAGES)


def list_all_stages() -> list[str]:
    return list(PIPELINE_ORDER)


def is_stage(value: object) -> bool:
    return isinstance(value, str) and value in STAGE_INFO


def display_name(stage: str) -> str:
    return STAGE_INFO[stage].name


def color(stage: str) -> str:
    return STAGE_INFO[stage].color


def win_probability(stage: str) -> int:
    return STAGE_INFO[stage].win_probability


def is_active(stage: str) -> bool:
    return stage in ACTIVE_STAGES


def is_terminal(stage: str) -> bool:
    return stage in TERMINAL_STAGES


def next_stage(stage: str) -> Optional[str]:
    """Ordinal successor among active stages; None past the last active stage or for terminals."""
    if stage not in ACTIVE_STAGES:
        return None
    idx = ACTIVE_STAGES.index(stage)
    if idx + 1 >= len(ACTIVE_STAGES):
        return None
    return ACTIVE_STAGES[idx + 1]
