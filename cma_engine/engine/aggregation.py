from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..core.config import Settings, settings as default_settings
from ..core.finance import money, percent_band, whole_dollars
from .filters import FilterCriteria, SortKey
from .models import ConfidenceLevel, ScoredComparable, SubjectProperty, ValuationSummary
from .scoring import rank


@dataclass(frozen=True)
class ConfidenceConfig:
    target_comps: int = 8
    cv_ceiling: float = 0.5
    high_threshold: float = 70.0
    medium_threshold: float = 40.0

    @classmethod
    def from_settings(cls, s: Settings = default_settings) -> "ConfidenceConfig":
        return cls(
            target_comps=s.CONFIDENCE_TARGET_COMPS,
            cv_ceiling=s.CONFIDENCE_CV_CEILING,
            high_threshold=s.CONFIDENCE_HIGH_THRESHOLD,
            medium_threshold=s.CONFIDENCE_MEDIUM_THRESHOLD,
        )


def _weighted_mean(values: np.ndarray, weights: np.ndarray) -> float:
    """Weighted mean; falls back to the plain mean when every weight is zero."""
    if weights.sum() <= 0:
        return float(values.mean())
    return float(np.average(values, weights=weights))


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    arr = np.asarray(values, dtype="float64")
    if arr.size < 2:
        return None
    mean = arr.mean()
    if mean <= 0:
        return None
    return float(arr.std(ddof=1) / mean)


class ValuationAggregator:
    """
    Reduces a ranked comparable set to a value band and a confidence score.

    Only the top-N comparables (similarity order) feed the value, at their
    adjusted prices when feature adjustments were applied. The band is the
    weighted mid +/- price_range_pct, so the weighted mid always lies inside
    [low, high]. Confidence reads the spread of $/sqft, or of prices when no
    comp carries an area.
    """
    def __init__(self, config: Optional[ConfidenceConfig] = None):
        self.config = config or ConfidenceConfig.from_settings()

    def level_for(self, score: float) -> ConfidenceLevel:
        if score >= self.config.high_threshold:
            return ConfidenceLevel.HIGH
        if score >= self.config.medium_threshold:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def confidence(self, prices: Sequence[float]) -> float:
        n = len(prices)
        if n == 0:
            return 0.0
        sample = min(1.0, n / max(1, self.config.target_comps))
        cv = coefficient_of_variation(prices)
        if cv is None:
            dispersion = 0.5
        else:
            dispersion = max(0.0, 1.0 - cv / self.config.cv_ceiling)
        return round(100.0 * sample * dispersion, 1)

    def summarize(
        self,
        scored: Sequence[ScoredComparable],
        subject: SubjectProperty,
        criteria: FilterCriteria,
    ) -> ValuationSummary:
        priced = [c for c in scored if c.price is not None and c.price > 0]
        if not priced:
            return ValuationSummary(comparables_used=0)

        top: List[ScoredComparable] = rank(priced, SortKey.SIMILARITY)[:criteria.top_n]
        prices = np.array([c.price for c in top], dtype="float64")
        adjusted = np.array([c.adjusted_price for c in top], dtype="float64")
        weights = np.array([c.score for c in top], dtype="float64")

        per_sqft = [(c.value_per_sqft(subject.sqft), c.score) for c in top]
        per_sqft = [(v, w) for v, w in per_sqft if v is not None]
        avg_ppsf = weighted_ppsf = None
        ppsf = None
        if per_sqft:
            ppsf = np.array([v for v, _ in per_sqft], dtype="float64")
            area_weights = np.array([w for _, w in per_sqft], dtype="float64")
            avg_ppsf = float(ppsf.mean())
            weighted_ppsf = _weighted_mean(ppsf, area_weights)

        if weighted_ppsf is not None and subject.sqft:
            weighted_mid = weighted_ppsf * subject.sqft
            mid = avg_ppsf * subject.sqft
        else:
            weighted_mid = _weighted_mean(adjusted, weights)
            mid = float(adjusted.mean())

        low, high = percent_band(whole_dollars(weighted_mid), criteria.price_range_pct)
        # Dispersion is measured on what the value is built from
        score = self.confidence(ppsf.tolist() if ppsf is not None else adjusted.tolist())

        total_weight = float(weights.sum())
        breakdown = [
            {
                "listing_id": c.listing.listing_id,
                "score": c.score,
                "weight": round(c.score / total_weight, 4) if total_weight > 0 else round(1 / len(top), 4),
                "price": c.price,
                "adjusted_price": c.adjusted_price,
                "price_per_sqft": c.price_per_sqft,
            }
            for c in top
        ]

        return ValuationSummary(
            comparables_used=len(priced),
            top_comps_count=len(top),
            low=float(whole_dollars(low)),
            mid=float(whole_dollars(mid)),
            high=float(whole_dollars(high)),
            weighted_mid=float(whole_dollars(weighted_mid)),
            avg_price_per_sqft=float(money(avg_ppsf)) if avg_ppsf is not None else None,
            weighted_price_per_sqft=float(money(weighted_ppsf)) if weighted_ppsf is not None else None,
            confidence_score=score,
            confidence_level=self.level_for(score),
            median_price=float(whole_dollars(float(np.median(prices)))),
            price_min=float(prices.min()),
            price_max=float(prices.max()),
            price_std_dev=round(float(prices.std(ddof=1)), 2) if prices.size > 1 else 0.0,
            avg_adjusted_price=float(whole_dollars(float(adjusted.mean()))),
            median_adjusted_price=float(whole_dollars(float(np.median(adjusted)))),
            avg_distance_miles=round(float(np.mean([c.distance_miles for c in top])), 3),
            avg_similarity=round(float(weights.mean()), 4),
            weight_breakdown=breakdown,
        )
