"""Opportunity ranker.

Merges the observations of every plugin, sorts them by yield (highest first)
and keeps the best entry per strategy bucket. Ties keep the entry seen first,
both in the sorted list and in the per-bucket map.

Pure: no I/O, no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from treasury.types import YieldOpportunity


@dataclass(frozen=True)
class Ranking:
    """Result of ranking one cycle's opportunities.

    Attributes:
        opportunities: All observations, highest yield first (stable on ties)
        best: Global best, or None when nothing was observed
        best_by_bucket: Highest-yield entry per strategy tag (default bucket "any")
    """

    opportunities: tuple[YieldOpportunity, ...] = ()
    best: Optional[YieldOpportunity] = None
    best_by_bucket: Mapping[str, YieldOpportunity] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.opportunities

    def for_venue(self, venue: str) -> Optional[YieldOpportunity]:
        """Highest-yield observation for a venue."""
        for opp in self.opportunities:
            if opp.venue == venue:
                return opp
        return None


def rank_opportunities(opportunities: Iterable[YieldOpportunity]) -> Ranking:
    observed = list(opportunities)
    # sorted() is stable, so equal yields keep arrival order.
    ordered = tuple(sorted(observed, key=lambda o: o.yield_pct, reverse=True))

    best_by_bucket: dict[str, YieldOpportunity] = {}
    for opp in observed:
        current = best_by_bucket.get(opp.bucket)
        if current is None or opp.yield_pct > current.yield_pct:
            best_by_bucket[opp.bucket] = opp

    return Ranking(
        opportunities=ordered,
        best=ordered[0] if ordered else None,
        best_by_bucket=best_by_bucket,
    )


class OpportunityRanker:
    """Stateful wrapper that remembers the last ranking (exposed to telemetry)."""

    def __init__(self) -> None:
        self.last: Ranking = Ranking()

    def rank(self, opportunities: Iterable[YieldOpportunity]) -> Ranking:
        self.last = rank_opportunities(opportunities)
        return self.last

