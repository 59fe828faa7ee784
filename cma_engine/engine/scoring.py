"""
Similarity scoring for comparable candidates.

Each attribute contributes a similarity in [0, 1]:

    distance   linear decay to 0 at the search radius
    price      triangular decay, 0 once the delta exceeds price_range_pct
    sqft       triangular decay against sqft_range_pct
    beds/baths step penalty per unit of difference, floor 0
    year built linear decay over year_built_range
    lot size   triangular decay against a lot tolerance
    recency    linear decay over the lookback window

The composite is the weight-normalised sum minus fixed penalties for pool,
waterfront and condition mismatches, clamped to [0, 1]. Terms with data
missing on either side score a neutral 0.5.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.config import Settings, settings as default_settings
from ..core.finance import price_per_area
from ..data.base import Listing
from .filters import FilterCriteria, SortKey
from .models import ScoredComparable, SubjectProperty

NEUTRAL = 0.5
SCORE_PLACES = 6


@dataclass(frozen=True)
class ScoringConfig:
    weight_price: float = 0.35
    weight_sqft: float = 0.25
    weight_distance: float = 0.12
    weight_recency: float = 0.08
    weight_beds: float = 0.06
    weight_baths: float = 0.05
    weight_year: float = 0.05
    weight_lot: float = 0.04
    bed_step_penalty: float = 0.25
    bath_step_penalty: float = 0.25
    amenity_mismatch_penalty: float = 0.05
    condition_mismatch_penalty: float = 0.03
    lot_tolerance_pct: float = 50.0

    @classmethod
    def from_settings(cls, s: Settings = default_settings) -> "ScoringConfig":
        return cls(
            weight_price=s.SCORE_WEIGHT_PRICE,
            weight_sqft=s.SCORE_WEIGHT_SQFT,
            weight_distance=s.SCORE_WEIGHT_DISTANCE,
            weight_recency=s.SCORE_WEIGHT_RECENCY,
            weight_beds=s.SCORE_WEIGHT_BEDS,
            weight_baths=s.SCORE_WEIGHT_BATHS,
            weight_year=s.SCORE_WEIGHT_YEAR,
            weight_lot=s.SCORE_WEIGHT_LOT,
            bed_step_penalty=s.BED_STEP_PENALTY,
            bath_step_penalty=s.BATH_STEP_PENALTY,
            amenity_mismatch_penalty=s.AMENITY_MISMATCH_PENALTY,
            condition_mismatch_penalty=s.CONDITION_MISMATCH_PENALTY,
            lot_tolerance_pct=s.LOT_TOLERANCE_PCT,
        )

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "price": self.weight_price,
            "sqft": self.weight_sqft,
            "distance": self.weight_distance,
            "recency": self.weight_recency,
            "beds": self.weight_beds,
            "baths": self.weight_baths,
            "year_built": self.weight_year,
            "lot_size": self.weight_lot,
        }


def linear_decay(delta: float, span: float) -> float:
    """1 at delta 0, 0 at delta >= span."""
    if span <= 0:
        return 1.0 if delta == 0 else 0.0
    return max(0.0, 1.0 - abs(delta) / span)


def triangular(subject_value: Optional[float], comp_value: Optional[float], tolerance_pct: float) -> Tuple[float, Optional[float]]:
    """Similarity and percentage delta; neutral when either side is unknown."""
    if not subject_value or subject_value <= 0 or comp_value is None or comp_value <= 0:
        return NEUTRAL, None
    delta_pct = (comp_value - subject_value) / subject_value * 100
    return linear_decay(delta_pct, tolerance_pct), delta_pct


def step(subject_value, comp_value, penalty: float) -> Tuple[float, Optional[float]]:
    if subject_value is None or comp_value is None:
        return NEUTRAL, None
    diff = comp_value - subject_value
    return max(0.0, 1.0 - abs(diff) * penalty), diff


def _norm(text: Optional[str]) -> Optional[str]:
    return text.strip().lower() if text else None


class SimilarityScorer:
    """
    Pure function of (subject, candidate, criteria, today): no shared state,
    so candidates can be scored in any order or in parallel.
    """
    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig.from_settings()
        weights = self.config.weights
        total = sum(w for w in weights.values() if w > 0)
        self._weights = {k: (max(w, 0.0) / total if total else 0.0) for k, w in weights.items()}

    def score(
        self,
        subject: SubjectProperty,
        listing: Listing,
        distance_miles: float,
        criteria: FilterCriteria,
        today: date,
    ) -> ScoredComparable:
        cfg = self.config
        sims: Dict[str, float] = {}
        deltas: Dict[str, Optional[float]] = {"distance_miles": round(distance_miles, 4)}

        sims["distance"] = linear_decay(distance_miles, criteria.radius)

        price = listing.price
        sims["price"], price_pct = triangular(subject.price, price, criteria.price_range_pct)
        deltas["price"] = (price - subject.price) if (price is not None and subject.price) else None
        deltas["price_pct"] = round(price_pct, 4) if price_pct is not None else None

        sims["sqft"], sqft_pct = triangular(subject.sqft, listing.sqft, criteria.sqft_range_pct)
        deltas["sqft"] = (listing.sqft - subject.sqft) if (listing.sqft is not None and subject.sqft) else None
        deltas["sqft_pct"] = round(sqft_pct, 4) if sqft_pct is not None else None

        sims["beds"], deltas["beds"] = step(subject.beds, listing.beds, cfg.bed_step_penalty)
        sims["baths"], deltas["baths"] = step(subject.baths, listing.baths, cfg.bath_step_penalty)

        if subject.year_built and listing.year_built:
            diff = listing.year_built - subject.year_built
            sims["year_built"] = linear_decay(diff, criteria.year_built_range)
            deltas["year_built"] = diff
        else:
            sims["year_built"], deltas["year_built"] = NEUTRAL, None

        sims["lot_size"], lot_pct = triangular(subject.lot_size, listing.lot_size_acres, cfg.lot_tolerance_pct)
        deltas["lot_size_pct"] = round(lot_pct, 4) if lot_pct is not None else None

        event = listing.event_date
        if event is not None:
            age_days = max(0, (today - event).days)
            sims["recency"] = linear_decay(age_days, criteria.lookback_days)
            deltas["age_days"] = age_days
        else:
            sims["recency"], deltas["age_days"] = NEUTRAL, None

        composite = sum(self._weights[k] * sims[k] for k in self._weights)

        penalties: Dict[str, float] = {}
        if bool(subject.pool) != bool(listing.pool):
            penalties["pool"] = cfg.amenity_mismatch_penalty
        if bool(subject.waterfront) != bool(listing.waterfront):
            penalties["waterfront"] = cfg.amenity_mismatch_penalty
        subj_cond, comp_cond = _norm(subject.condition), _norm(listing.condition)
        if subj_cond and comp_cond and subj_cond != comp_cond:
            penalties["condition"] = cfg.condition_mismatch_penalty
        composite -= sum(penalties.values())

        score = round(min(1.0, max(0.0, composite)), SCORE_PLACES)
        ppsf = price_per_area(price, listing.sqft)
        return ScoredComparable(
            listing=listing,
            distance_miles=distance_miles,
            score=score,
            deltas=deltas,
            similarities=sims,
            penalties=penalties,
            price_per_sqft=float(ppsf) if ppsf is not None else None,
        )

    def score_all(
        self,
        subject: SubjectProperty,
        candidates: Iterable[Tuple[Listing, float]],
        criteria: FilterCriteria,
        today: date,
    ) -> List[ScoredComparable]:
        return [self.score(subject, listing, dist, criteria, today) for listing, dist in candidates]


def similarity_key(c: ScoredComparable):
    """
    Total order: score desc, then smaller |price delta|, more recent
    sale/list date, fewer days on market, and listing id as the last resort.
    """
    event = c.listing.event_date
    dom = c.listing.days_on_market
    return (
        -c.score,
        c.abs_price_delta,
        -(event.toordinal() if event else 0),
        dom if dom is not None else float("inf"),
        c.listing.listing_id,
    )


def rank(scored: Iterable[ScoredComparable], sort_by: SortKey = SortKey.SIMILARITY) -> List[ScoredComparable]:
    items = list(scored)
    if sort_by == SortKey.PRICE:
        return sorted(items, key=lambda c: (c.price if c.price is not None else float("inf"), similarity_key(c)))
    if sort_by == SortKey.DISTANCE:
        return sorted(items, key=lambda c: (c.distance_miles, similarity_key(c)))
    if sort_by == SortKey.DATE:
        return sorted(items, key=lambda c: (
            -(c.listing.event_date.toordinal() if c.listing.event_date else 0), similarity_key(c)))
    return sorted(items, key=similarity_key)
