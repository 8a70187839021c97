"""Tests for opportunity ranking."""

from treasury.agent.ranker import OpportunityRanker, Ranking, rank_opportunities
from treasury.types import YieldOpportunity


def _opp(venue: str, yield_pct: float, tag: str | None = None, source: str = "test") -> YieldOpportunity:
    return YieldOpportunity(venue=venue, yield_pct=yield_pct, confidence=0.9, source=source, strategy_tag=tag)


class TestRankOpportunities:
    def test_empty_input(self) -> None:
        """No observations gives an empty ranking without a best entry."""
        ranking = rank_opportunities([])
        assert ranking.empty
        assert ranking.best is None
        assert ranking.best_by_bucket == {}

    def test_sorted_descending(self) -> None:
        """Opportunities are ordered by yield, highest first."""
        ranking = rank_opportunities([_opp("a", 4.0), _opp("b", 9.0), _opp("c", 6.5)])
        assert [o.venue for o in ranking.opportunities] == ["b", "c", "a"]
        assert ranking.best.venue == "b"

    def test_best_per_bucket_from_second_plugin(self) -> None:
        """Two DeFi_Yield observations at 6.0% and 8.5% keep the 8.5% one."""
        first = _opp("base", 6.0, "DeFi_Yield", source="plugin-one")
        second = _opp("sui", 8.5, "DeFi_Yield", source="plugin-two")
        ranking = rank_opportunities([first, second])
        assert ranking.best_by_bucket["DeFi_Yield"] is second

    def test_untagged_goes_to_default_bucket(self) -> None:
        """Entries without a strategy tag land in the "any" bucket."""
        ranking = rank_opportunities([_opp("arc", 5.0), _opp("base", 7.0, "DeFi_Yield")])
        assert set(ranking.best_by_bucket) == {"any", "DeFi_Yield"}
        assert ranking.best_by_bucket["any"].venue == "arc"

    def test_ties_keep_first_seen(self) -> None:
        """Equal yields keep arrival order in the list and in the bucket map."""
        first = _opp("ethereum", 7.0, "DeFi_Yield")
        second = _opp("base", 7.0, "DeFi_Yield")
        ranking = rank_opportunities([first, second])
        assert ranking.opportunities == (first, second)
        assert ranking.best_by_bucket["DeFi_Yield"] is first

    def test_ranking_is_idempotent(self) -> None:
        """Ranking the same list twice yields the same bucket map."""
        opps = [_opp("a", 6.0, "x"), _opp("b", 8.0, "x"), _opp("c", 3.0), _opp("d", 3.0)]
        assert rank_opportunities(opps).best_by_bucket == rank_opportunities(opps).best_by_bucket

    def test_for_venue_returns_highest(self) -> None:
        """for_venue picks the best observation of that venue."""
        ranking = rank_opportunities([_opp("sui", 6.2), _opp("sui", 8.5), _opp("arc", 5.0)])
        assert ranking.for_venue("sui").yield_pct == 8.5
        assert ranking.for_venue("ethereum") is None


class TestOpportunityRanker:
    def test_remembers_last_ranking(self) -> None:
        """The ranker exposes the most recent ranking."""
        ranker = OpportunityRanker()
        assert ranker.last == Ranking()
        ranking = ranker.rank([_opp("arc", 5.0)])
        assert ranker.last is ranking
