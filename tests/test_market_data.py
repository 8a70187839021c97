"""Tests for the Stork, DeepBook and DefiLlama yield sources."""

from unittest.mock import Mock

import httpx
import pytest
import requests

from treasury.config import DefiLlamaConfig, HomeRebalanceConfig
from treasury.market_data.deepbook import DeepBookYieldSource, calculate_spread_yield, parse_level2
from treasury.market_data.defillama import DefiLlamaClient, synthetic_chain_yields
from treasury.market_data.stork import StorkYieldSource


class Ticker:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestStorkYieldSource:
    @pytest.mark.asyncio
    async def test_no_api_key_is_synthetic(self) -> None:
        """Without a key the quote is the synthetic 6.5% at 0.5 confidence."""
        quote = await StorkYieldSource(HomeRebalanceConfig()).fetch_yield()
        assert quote.value_pct == 6.5
        assert quote.confidence == 0.5
        assert quote.mocked

    @pytest.mark.asyncio
    async def test_implied_yield_from_price(self) -> None:
        """A 1.02 price implies 2% + 5% base."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["assets"] = request.url.params["assets"]
            return httpx.Response(200, json={"data": {"USYCUSD": {"price": "1020000000000000000"}}})

        source = StorkYieldSource(HomeRebalanceConfig(stork_api_key="k"), client=_client(handler))
        quote = await source.fetch_yield()
        assert quote.value_pct == pytest.approx(7.0)
        assert quote.confidence == 0.95
        assert quote.source == "stork"
        assert seen == {"auth": "Basic k", "assets": "USYCUSD"}

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"data": {"USYCUSD": {"price": "1.0"}}})

        ticker = Ticker()
        source = StorkYieldSource(HomeRebalanceConfig(stork_api_key="k"), client=_client(handler), clock=ticker)
        await source.fetch_yield()
        ticker.now += 30
        await source.fetch_yield()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_error_falls_back_to_cache(self) -> None:
        """After an API error the last live value is reused with reduced confidence."""
        responses = iter(
            [
                httpx.Response(200, json={"data": {"USYCUSD": {"price": "1.01"}}}),
                httpx.Response(503),
            ]
        )
        ticker = Ticker()
        source = StorkYieldSource(
            HomeRebalanceConfig(stork_api_key="k"), client=_client(lambda request: next(responses)), clock=ticker
        )
        live = await source.fetch_yield()
        ticker.now += 120
        fallback = await source.fetch_yield()
        assert fallback.value_pct == live.value_pct
        assert fallback.confidence == 0.5
        assert fallback.source == "synthetic:stork-cache"

    @pytest.mark.asyncio
    async def test_error_without_cache_is_synthetic(self) -> None:
        source = StorkYieldSource(
            HomeRebalanceConfig(stork_api_key="k"), client=_client(lambda request: httpx.Response(500))
        )
        quote = await source.fetch_yield()
        assert quote.source == "synthetic:stork"


class TestSpreadYield:
    def test_formula(self) -> None:
        """0.1% spread, 40% capture, two turns a day."""
        assert calculate_spread_yield(0.1) == pytest.approx(29.2)

    def test_capped_at_fifty(self) -> None:
        assert calculate_spread_yield(1.0) == 50.0

    def test_parse_level2_skips_bad_levels(self) -> None:
        summary = parse_level2(
            {"bids": [["1.00", "10"], ["0.99", "5"], ["bad", "1"], ["0.5", "0"]], "asks": [["1.001", "4"], [1.01, 6]]}
        )
        assert summary.best_bid == 1.0
        assert summary.best_ask == 1.001
        assert summary.bid_liquidity == 15
        assert summary.ask_liquidity == 10


class TestDeepBookYieldSource:
    @pytest.mark.asyncio
    async def test_live_pools(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["level"] == "2"
            if request.url.path.endswith("SUI_DBUSDC"):
                return httpx.Response(200, json={"bids": [["1.0", "100"]], "asks": [["1.001", "100"]]})
            return httpx.Response(200, json={"bids": [], "asks": []})

        source = DeepBookYieldSource(
            indexer_url="https://indexer.test/",
            pool_keys=("SUI_DBUSDC", "DEEP_DBUSDC"),
            client=_client(handler),
        )
        pools = await source.fetch_pool_yields()
        assert [p.pool_key for p in pools] == ["SUI_DBUSDC"]
        assert pools[0].apy == pytest.approx(29.2)
        assert pools[0].mocked is False
        assert pools[0].base_asset == "SUI"
        assert pools[0].quote_asset == "DBUSDC"

    @pytest.mark.asyncio
    async def test_synthetic_when_no_book(self) -> None:
        """When no order book can be read every pool gets its synthetic yield."""
        source = DeepBookYieldSource(
            indexer_url="https://indexer.test",
            pool_keys=("SUI_DBUSDC", "DEEP_DBUSDC"),
            client=_client(lambda request: httpx.Response(502)),
        )
        pools = await source.fetch_pool_yields()
        assert [(p.pool_key, p.apy, p.mocked) for p in pools] == [
            ("SUI_DBUSDC", 8.5, True),
            ("DEEP_DBUSDC", 6.2, True),
        ]


def _session(payload=None, error=None) -> Mock:
    session = Mock()
    response = Mock()
    response.json.return_value = payload
    session.get.return_value = response
    if error is not None:
        session.get.side_effect = error
    return session


class TestDefiLlamaClient:
    def test_best_pool_per_chain(self) -> None:
        """Filters by symbol, TVL, APY ceiling and project; keeps the best per chain."""
        pools = [
            {"chain": "Base", "symbol": "USDC", "project": "aave-v3", "tvlUsd": 9e6, "apy": 6.1},
            {"chain": "Base", "symbol": "USDC", "project": "morpho-blue", "tvlUsd": 8e6, "apy": 7.4},
            {"chain": "Base", "symbol": "USDC", "project": "shady", "tvlUsd": 9e6, "apy": 12.0},
            {"chain": "Base", "symbol": "USDC", "project": "aave-v3", "tvlUsd": 1e6, "apy": 9.0},
            {"chain": "Ethereum", "symbol": "USDC-WETH", "project": "compound-v3", "tvlUsd": 9e7, "apyBase": 3.0, "apyReward": 1.5},
            {"chain": "Ethereum", "symbol": "USDC", "project": "aave-v3", "tvlUsd": 9e7, "apy": 45.0},
            {"chain": "Ethereum", "symbol": "DAI", "project": "spark", "tvlUsd": 9e7, "apy": 8.0},
        ]
        client = DefiLlamaClient(DefiLlamaConfig(), session=_session({"data": pools}))
        best = client.best_chain_yields(["ethereum", "base", "avalanche"])

        assert [(y.chain, y.protocol, y.apy) for y in best] == [
            ("ethereum", "compound-v3", 4.5),
            ("base", "morpho-blue", 7.4),
        ]

    def test_request_failure_raises(self) -> None:
        client = DefiLlamaClient(DefiLlamaConfig(), session=_session(error=requests.ConnectionError("down")))
        with pytest.raises(RuntimeError, match="request failed"):
            client.best_chain_yields(["base"])

    def test_no_match_raises(self) -> None:
        pools = [{"chain": "Base", "symbol": "DAI", "project": "aave-v3", "tvlUsd": 9e6, "apy": 6.1}]
        client = DefiLlamaClient(DefiLlamaConfig(), session=_session(pools))
        with pytest.raises(RuntimeError, match="No matching"):
            client.best_chain_yields(["base"])

    def test_synthetic_chain_yields(self) -> None:
        yields = synthetic_chain_yields(["ethereum", "base", "polygon"])
        assert [y.apy for y in yields] == [4.2, 6.5, 4.0]
        assert all(y.mocked for y in yields)
