from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from . import stages
from .models import Opportunity, weighted_value


@dataclass(frozen=True)
class PipelineMetrics:
    pipeline_value: float = 0
    active_count: int = 0
    won_count: int = 0
    lost_count: int = 0
    conversion_rate: int = 0
    weighted_pipeline_value: float = 0
    stage_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_value": self.pipeline_value,
            "active_count": self.active_count,
            "won_count": self.won_count,
            "lost_count": self.lost_count,
            "conversion_rate": self.conversion_rate,
            "weighted_pipeline_value": self.weighted_pipeline_value,
            "stage_counts": dict(self.stage_counts),
        }


def conversion_rate(won: int, lost: int) -> int:
    closed = won + lost
    if closed <= 0:
        return 0
    pct = Decimal(won) * 100 / Decimal(closed)
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_metrics(opportunities: Iterable[Opportunity]) -> PipelineMetrics:
    """Recompute every aggregate from scratch for the given (filtered) set."""
    counts = {s: 0 for s in stages.list_all_stages()}
    pipeline_value = 0.0
    weighted = 0.0

    for opp in opportunities:
        if opp.stage in counts:
            counts[opp.stage] += 1
        if stages.is_active(opp.stage):
            pipeline_value += opp.estimated_value or 0
            weighted += weighted_value(opp)

    won = counts[stages.WON]
    lost = counts[stages.LOST]
    return PipelineMetrics(
        pipeline_value=pipeline_value,
        active_count=sum(counts[s] for s in stages.ACTIVE_STAGES),
        won_count=won,
        lost_count=lost,
        conversion_rate=conversion_rate(won, lost),
        weighted_pipeline_value=round(weighted, 2),
        stage_counts=counts,
    )
