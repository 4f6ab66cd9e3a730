"""
Board views: free-text / stage filtering and per-stage column grouping.

Both are pure functions of the (already soft-delete-filtered) opportunity set.
"""
from __future__ import annotations

from typing import Callable, Iterable, Mapping, Optional

from . import stages
from .models import Opportunity

DisplayNameResolver = Callable[[Opportunity], str]


def resolve_display_name(
    opportunity: Opportunity,
    client_names: Optional[Mapping[str, str]] = None,
) -> str:
    """Linked account name when the deal is linked to a known client, else the contact name."""
    if opportunity.client_id and client_names:
        name = client_names.get(opportunity.client_id)
        if name:
            return name
    return opportunity.contact_name or ""


def filter_opportunities(
    opportunities: Iterable[Opportunity],
    search_query: Optional[str],
    stage_filter: Optional[str],
    resolve_name: Optional[DisplayNameResolver] = None,
) -> list[Opportunity]:
    query = (search_query or "").strip().lower()
    resolver = resolve_name or resolve_display_name

    out: list[Opportunity] = []
    for opp in opportunities:
        if stage_filter and opp.stage != stage_filter:
            continue
        if query:
            haystack = (
                resolver(opp) or "",
                opp.contact_name or "",
                opp.title or "",
            )
            if not any(query in field.lower() for field in haystack):
                continue
        out.append(opp)
    return out


def group_by_stage(opportunities: Iterable[Opportunity]) -> dict[str, list[Opportunity]]:
    """One bucket per registry stage in column order, even when empty."""
    buckets: dict[str, list[Opportunity]] = {s: [] for s in stages.list_all_stages()}
    for opp in opportunities:
        bucket = buckets.get(opp.stage)
        if bucket is not None:
            bucket.append(opp)
    return buckets


def column_value(bucket: Iterable[Opportunity]) -> float:
    return sum(o.estimated_value or 0 for o in bucket)
