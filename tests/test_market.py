import asyncio

import pytest

from conftest import CountingInventory, SlowInventory
from cma_engine.core.cache import ResultCache
from cma_engine.core.errors import UpstreamTimeout
from cma_engine.data.base import ListingStatus
from cma_engine.data.inventory_client import InMemoryInventory
from cma_engine.engine.market import MarketContextCalculator, build_context, classify, health_score
from cma_engine.engine.models import MarketClassification


def _calculator(repo, clock, timeout=1.0):
    return MarketContextCalculator(
        repo, cache=ResultCache(namespace="market-test", ttl_seconds=60, use_redis=False),
        timeout=timeout, clock=clock,
    )


@pytest.fixture
def hot_listings(make_listing):
    rows = [make_listing(status=ListingStatus.ACTIVE, days_ago=3) for _ in range(2)]
    for i in range(9):
        price = 480_000 + i * 10_000     # newer sales are pricier
        rows.append(make_listing(price, days_ago=85 - i * 10, list_price=price * 0.98, days_on_market=10))
    return rows


@pytest.fixture
def cold_listings(make_listing):
    rows = [make_listing(status=ListingStatus.ACTIVE, days_ago=40) for _ in range(30)]
    rows.append(make_listing(450_000, days_ago=60, list_price=500_000, days_on_market=120))
    return rows


class TestScoring:
    def test_classification_thresholds(self):
        assert classify(65) == MarketClassification.HOT
        assert classify(64) == MarketClassification.BALANCED
        assert classify(40) == MarketClassification.BALANCED
        assert classify(39) == MarketClassification.COLD
        assert classify(None) == MarketClassification.UNKNOWN

    def test_neutral_without_signals(self):
        assert health_score(None, None, None, None) == (50, [])


class TestBuildContext:
    def test_no_data_is_unknown_but_not_degraded(self, today):
        ctx = build_context([], "Boston", "MA", None, 12, today)
        assert ctx.classification == MarketClassification.UNKNOWN
        assert ctx.degraded is False

    def test_hot_market(self, hot_listings, today):
        ctx = build_context(hot_listings, "Boston", "MA", None, 12, today)
        assert ctx.active_listings == 2
        assert ctx.avg_monthly_sales == 3.0
        assert ctx.months_of_supply == pytest.approx(0.7)
        assert ctx.avg_days_on_market == 10
        assert ctx.avg_sale_to_list_ratio > 1
        assert ctx.price_trend_pct > 0
        assert ctx.classification == MarketClassification.HOT

    def test_cold_market(self, cold_listings, today):
        ctx = build_context(cold_listings, "Boston", "MA", None, 12, today)
        assert ctx.months_of_supply > 6
        assert ctx.classification == MarketClassification.COLD
        assert "High inventory (buyer's market)" in ctx.factors


class TestCalculator:
    def test_result_is_cached_per_area(self, hot_listings, clock):
        repo = CountingInventory(hot_listings)
        calls = {"n": 0}
        original = repo.area_listings

        async def counted(*args, **kwargs):
            calls["n"] += 1
            return await original(*args, **kwargs)

        repo.area_listings = counted
        calc = _calculator(repo, clock)
        first = asyncio.run(calc.compute("Boston", "MA"))
        second = asyncio.run(calc.compute("boston", "ma"))
        assert calls["n"] == 1
        assert second.to_dict() == first.to_dict()

    def test_timeout_raises(self, hot_listings, clock):
        calc = _calculator(SlowInventory(hot_listings, delay=0.5), clock, timeout=0.05)
        with pytest.raises(UpstreamTimeout):
            asyncio.run(calc.compute("Boston", "MA"))

    def test_blank_city_is_unknown(self, clock):
        ctx = asyncio.run(_calculator(InMemoryInventory(), clock).compute(""))
        assert ctx.classification == MarketClassification.UNKNOWN
