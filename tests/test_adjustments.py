"""
Feature adjustments: per-feature dollar amounts, caps and warnings.
"""

import pytest

from conftest import SUBJECT_LAT, SUBJECT_LNG
from cma_engine.engine.adjustments import (
    AdjustmentCalculator, AdjustmentConfig, market_price_per_sqft, tiered_sqft,
)
from cma_engine.engine.aggregation import ConfidenceConfig, ValuationAggregator
from cma_engine.engine.filters import normalize_filters
from cma_engine.engine.models import Adjustment, ScoredComparable, SubjectProperty


@pytest.fixture
def subject():
    return SubjectProperty(
        lat=SUBJECT_LAT, lng=SUBJECT_LNG, price=500_000, beds=3, baths=2.0, sqft=2000,
        year_built=1995, garage_spaces=1,
    )


@pytest.fixture
def calc():
    return AdjustmentCalculator(AdjustmentConfig())


@pytest.fixture
def comp(make_listing):
    def _comp(price=500_000, distance=0.5, **listing_fields):
        listing = make_listing(price, **listing_fields)
        sqft = listing.sqft
        return ScoredComparable(
            listing=listing, distance_miles=distance, score=0.9,
            price_per_sqft=price / sqft if (price and sqft) else None,
        )
    return _comp


def _by_feature(result):
    return {a.feature: a for a in result.items}


class TestFeatures:
    def test_identical_comp_needs_no_adjustment(self, calc, subject, comp):
        result = calc.adjust(subject, comp(), market_ppsf=250)
        assert result.items == []
        assert result.adjusted_price == 500_000
        assert result.size_reconciled is True

    def test_larger_comp_is_adjusted_down(self, calc, subject, comp):
        result = calc.adjust(subject, comp(sqft=2100), market_ppsf=250)
        sqft = _by_feature(result)["sqft"]
        assert sqft.amount == -25_000
        assert result.adjusted_price == 475_000

    def test_diminishing_returns_tiers(self):
        assert tiered_sqft(100) == 100
        assert tiered_sqft(1000) == 200 + 300 * 0.75 + 500 * 0.5

    def test_sqft_adjustment_capped_at_ten_percent(self, calc, subject, comp):
        result = calc.adjust(subject, comp(sqft=1000), market_ppsf=300)
        sqft = _by_feature(result)["sqft"]
        assert sqft.amount == 50_000
        assert sqft.capped is True

    def test_garage_first_and_additional_spaces_are_bounded(self, calc, subject, comp):
        result = calc.adjust(subject, comp(garage_spaces=3), market_ppsf=250)
        # 2.5% and 1.5% of 500k fall under the $15k / $10k floors
        assert _by_feature(result)["garage_spaces"].amount == -25_000

    def test_year_built_band_and_year_cap(self, calc, subject, comp):
        assert "year_built" not in _by_feature(calc.adjust(subject, comp(year_built=1999), market_ppsf=250))
        year = _by_feature(calc.adjust(subject, comp(year_built=2025), market_ppsf=250))["year_built"]
        assert year.amount == -40_000
        assert year.capped is True

    def test_beds_and_half_baths(self, calc, subject, comp):
        items = _by_feature(calc.adjust(subject, comp(beds=4, baths=2.5), market_ppsf=250))
        assert items["beds"].amount == -15_000
        assert items["baths"].amount == -2_500

    def test_pool_comp_is_adjusted_down(self, calc, subject, comp):
        result = calc.adjust(subject, comp(pool=True), market_ppsf=250)
        assert _by_feature(result)["pool"].amount == -50_000

    @pytest.mark.parametrize("distance,expected", [(0.9, None), (3.0, -15_000), (8.0, -25_000)])
    def test_location_rate_applies_beyond_one_mile(self, calc, subject, comp, distance, expected):
        items = _by_feature(calc.adjust(subject, comp(distance=distance), market_ppsf=250))
        assert (items["location"].amount if "location" in items else None) == expected

    def test_unpriced_comp_is_not_adjusted(self, calc, subject, comp):
        assert calc.adjust(subject, comp(price=None), market_ppsf=250) is None


class TestValidation:
    def test_individual_cap_and_net_warning(self, calc, subject, comp):
        result = calc.adjust(subject, comp(waterfront=True), market_ppsf=250)
        water = _by_feature(result)["waterfront"]
        assert water.amount == -100_000
        assert water.capped is True
        assert result.adjusted_price == 400_000
        assert {w["type"] for w in result.warnings} == {"individual", "net"}

    def test_gross_total_is_scaled_to_its_cap(self, calc):
        items = [
            Adjustment("beds", -1, -90_000, ""),
            Adjustment("baths", 1, 90_000, ""),
            Adjustment("pool", 1, -90_000, ""),
        ]
        result = calc.validate(items, 500_000)
        assert result.gross_pct == 40.0
        assert result.total == -66_667
        assert result.capped is True
        assert "gross" in {w["type"] for w in result.warnings}

    def test_net_total_is_capped(self, calc):
        items = [Adjustment("beds", 1, -100_000, ""), Adjustment("pool", 1, -100_000, "")]
        result = calc.validate(items, 500_000)
        assert result.total == -150_000
        assert result.net_pct == 30.0
        assert result.adjusted_price == 350_000
        assert result.capped is True


class TestMarketRate:
    def test_median_of_candidate_set(self, comp):
        comps = [comp(price=400_000), comp(price=500_000), comp(price=600_000)]
        assert market_price_per_sqft(comps, default=350) == 250

    def test_default_without_areas(self, comp):
        assert market_price_per_sqft([comp(sqft=None)], default=350) == 350


def test_value_is_built_from_adjusted_prices(calc, subject, comp):
    comps = [comp(price=550_000, pool=True), comp(price=500_000)]
    calc.apply(subject, comps)
    assert comps[0].adjusted_price == 500_000
    s = ValuationAggregator(ConfidenceConfig()).summarize(comps, subject, normalize_filters({}))
    assert s.weighted_mid == 500_000
    assert s.avg_adjusted_price == 500_000
    assert s.price_max == 550_000
