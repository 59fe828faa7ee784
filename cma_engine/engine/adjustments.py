"""
Feature-based dollar adjustments.

Each comparable's price is moved toward what it would have sold for with the
subject's features. A comp that is the better property (larger, newer, an
extra garage space, a pool the subject lacks) is adjusted down; a weaker comp
is adjusted up.

    sqft        market $/sqft on the difference, tiered: first 200 sqft at
                100%, next 300 at 75%, remainder at 50%; capped at 10% of price
    garage      first space 2.5% of price ($15k-$60k), each additional 1.5%
                ($10k-$40k)
    year built  0.4% of price per year beyond a 5-year band, at most 20
                years and 10% of price
    beds        2.5% of price per bedroom ($15k-$75k)
    baths       0.83% of price per bath ($5k-$30k), half baths count
    pool        flat value
    waterfront  flat value
    location    per-mile rate once a comp is over a mile away, at most 5 miles

Validation follows appraisal review thresholds: an individual adjustment over
10% of price, net over 15% or gross over 25% raises a warning; individual
adjustments are hard capped at 20%, gross at 40% (scaled down proportionally)
and net at 30%.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.config import Settings, settings as default_settings
from ..core.finance import whole_dollars
from .models import Adjustment, AdjustmentSet, ScoredComparable, SubjectProperty

Bounds = Tuple[float, float]


@dataclass(frozen=True)
class AdjustmentConfig:
    default_price_per_sqft: float = 350.0
    sqft_max_pct: float = 0.10
    garage_first_pct: float = 0.025
    garage_first_bounds: Bounds = (15_000.0, 60_000.0)
    garage_add_pct: float = 0.015
    garage_add_bounds: Bounds = (10_000.0, 40_000.0)
    year_built_pct: float = 0.004
    year_built_band: int = 5
    year_built_max_years: int = 20
    year_built_max_pct: float = 0.10
    bedroom_pct: float = 0.025
    bedroom_bounds: Bounds = (15_000.0, 75_000.0)
    bathroom_pct: float = 0.0083
    bathroom_bounds: Bounds = (5_000.0, 30_000.0)
    pool_value: float = 50_000.0
    waterfront_value: float = 200_000.0
    location_rate: float = 5_000.0
    location_max_miles: float = 5.0
    individual_warn_pct: float = 0.10
    individual_cap_pct: float = 0.20
    net_warn_pct: float = 0.15
    net_cap_pct: float = 0.30
    gross_warn_pct: float = 0.25
    gross_cap_pct: float = 0.40

    @classmethod
    def from_settings(cls, s: Settings = default_settings) -> "AdjustmentConfig":
        return cls(
            default_price_per_sqft=s.ADJ_DEFAULT_PRICE_PER_SQFT,
            pool_value=s.ADJ_POOL_VALUE,
            waterfront_value=s.ADJ_WATERFRONT_VALUE,
            location_rate=s.ADJ_LOCATION_RATE,
        )


def _bounded(value: float, bounds: Bounds) -> float:
    lo, hi = bounds
    return max(lo, min(hi, value))


def tiered_sqft(abs_diff: float) -> float:
    """Square feet at full value after diminishing returns."""
    tier1 = min(abs_diff, 200.0)
    tier2 = max(0.0, min(abs_diff - 200.0, 300.0))
    tier3 = max(0.0, abs_diff - 500.0)
    return tier1 + tier2 * 0.75 + tier3 * 0.5


def market_price_per_sqft(scored: Sequence[ScoredComparable], default: float) -> float:
    """Median $/sqft of the candidate set; the configured default when none carry area."""
    values = [c.price_per_sqft for c in scored if c.price_per_sqft]
    if not values:
        return default
    return float(np.median(values))


def _dollars(value: float) -> float:
    return float(whole_dollars(value))


class AdjustmentCalculator:
    def __init__(self, config: Optional[AdjustmentConfig] = None):
        self.config = config or AdjustmentConfig.from_settings()

    def items_for(
        self, subject: SubjectProperty, comp: ScoredComparable, price: float, market_ppsf: float
    ) -> Tuple[List[Adjustment], bool]:
        cfg = self.config
        listing = comp.listing
        items: List[Adjustment] = []
        size_reconciled = False

        if listing.sqft and subject.sqft:
            size_reconciled = True
            diff = listing.sqft - subject.sqft
            if diff:
                raw = tiered_sqft(abs(diff)) * market_ppsf
                amount = min(raw, price * cfg.sqft_max_pct)
                items.append(Adjustment(
                    feature="sqft",
                    difference=diff,
                    amount=-amount if diff > 0 else amount,
                    explanation=f"{'Larger' if diff > 0 else 'Smaller'} by {abs(diff):g} sqft @ ${market_ppsf:,.0f}/sqft",
                    capped=raw > amount,
                ))

        if listing.garage_spaces is not None and subject.garage_spaces is not None:
            diff = listing.garage_spaces - subject.garage_spaces
            if diff:
                value = _bounded(price * cfg.garage_first_pct, cfg.garage_first_bounds)
                value += (abs(diff) - 1) * _bounded(price * cfg.garage_add_pct, cfg.garage_add_bounds)
                items.append(Adjustment(
                    feature="garage_spaces",
                    difference=diff,
                    amount=-value if diff > 0 else value,
                    explanation=f"{'More' if diff > 0 else 'Fewer'} garage spaces ({abs(diff)})",
                ))

        if listing.year_built and subject.year_built:
            diff = listing.year_built - subject.year_built
            if abs(diff) > cfg.year_built_band:
                years = min(abs(diff), cfg.year_built_max_years)
                amount = min(years * price * cfg.year_built_pct, price * cfg.year_built_max_pct)
                items.append(Adjustment(
                    feature="year_built",
                    difference=diff,
                    amount=-amount if diff > 0 else amount,
                    explanation=f"Built {listing.year_built} vs {subject.year_built}",
                    capped=abs(diff) > cfg.year_built_max_years,
                ))

        if listing.beds is not None and subject.beds is not None:
            diff = listing.beds - subject.beds
            if diff:
                value = _bounded(price * cfg.bedroom_pct, cfg.bedroom_bounds)
                items.append(Adjustment(
                    feature="beds",
                    difference=diff,
                    amount=-diff * value,
                    explanation=f"{'More' if diff > 0 else 'Fewer'} bedrooms @ ${value:,.0f}/bed",
                ))

        if listing.baths is not None and subject.baths is not None:
            diff = listing.baths - subject.baths
            if abs(diff) >= 0.5:
                value = _bounded(price * cfg.bathroom_pct, cfg.bathroom_bounds)
                items.append(Adjustment(
                    feature="baths",
                    difference=diff,
                    amount=-diff * value,
                    explanation=f"{'More' if diff > 0 else 'Fewer'} bathrooms @ ${value:,.0f}/bath",
                ))

        for feature, comp_has, subject_has, value in (
            ("pool", listing.pool, subject.pool, cfg.pool_value),
            ("waterfront", listing.waterfront, subject.waterfront, cfg.waterfront_value),
        ):
            diff = int(bool(comp_has)) - int(bool(subject_has))
            if diff:
                items.append(Adjustment(
                    feature=feature,
                    difference=diff,
                    amount=-diff * value,
                    explanation=f"Comparable {'has' if diff > 0 else 'lacks'} {feature} (${value:,.0f})",
                ))

        if comp.distance_miles > 1.0:
            amount = min(comp.distance_miles, cfg.location_max_miles) * cfg.location_rate
            items.append(Adjustment(
                feature="location",
                difference=round(comp.distance_miles, 2),
                amount=-amount,
                explanation=f"{comp.distance_miles:.1f} miles from subject @ ${cfg.location_rate:,.0f}/mile",
            ))

        return items, size_reconciled

    def validate(self, items: List[Adjustment], price: float) -> AdjustmentSet:
        """Apply warning thresholds and hard caps; amounts end up in whole dollars."""
        cfg = self.config
        warnings = []
        capped = False

        for adj in items:
            pct = abs(adj.amount) / price
            if pct > cfg.individual_warn_pct:
                warnings.append({"type": "individual", "feature": adj.feature, "pct": round(pct * 100, 1)})
            if pct > cfg.individual_cap_pct:
                adj.amount = price * cfg.individual_cap_pct * (1 if adj.amount > 0 else -1)
                adj.capped = capped = True

        gross = sum(abs(a.amount) for a in items)
        net = sum(a.amount for a in items)
        if gross / price > cfg.gross_warn_pct:
            warnings.append({"type": "gross", "feature": "total_gross", "pct": round(gross / price * 100, 1)})
        if abs(net) / price > cfg.net_warn_pct:
            warnings.append({"type": "net", "feature": "total_net", "pct": round(abs(net) / price * 100, 1)})

        gross_cap = price * cfg.gross_cap_pct
        if gross > gross_cap:
            scale = gross_cap / gross
            for adj in items:
                adj.amount *= scale
                adj.capped = True
            capped = True

        for adj in items:
            adj.amount = _dollars(adj.amount)
        gross = sum(abs(a.amount) for a in items)
        net = sum(a.amount for a in items)

        net_cap = price * cfg.net_cap_pct
        if abs(net) > net_cap:
            net = _dollars(net_cap if net > 0 else -net_cap)
            capped = True

        return AdjustmentSet(
            items=items,
            total=net,
            adjusted_price=_dollars(price + net),
            gross_pct=round(gross / price * 100, 1),
            net_pct=round(abs(net) / price * 100, 1),
            warnings=warnings,
            capped=capped,
        )

    def adjust(self, subject: SubjectProperty, comp: ScoredComparable, market_ppsf: float) -> Optional[AdjustmentSet]:
        price = comp.price
        if price is None or price <= 0:
            return None
        items, size_reconciled = self.items_for(subject, comp, price, market_ppsf)
        result = self.validate(items, price)
        result.size_reconciled = size_reconciled
        return result

    def apply(self, subject: SubjectProperty, scored: Sequence[ScoredComparable]) -> Sequence[ScoredComparable]:
        """Attach an adjustment set to every priced comp, in place."""
        market_ppsf = market_price_per_sqft(scored, self.config.default_price_per_sqft)
        for comp in scored:
            comp.adjustment = self.adjust(subject, comp, market_ppsf)
        return scored
