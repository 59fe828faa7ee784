"""
Value types flowing through a single valuation run.
"""

from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import InvalidInput
from ..core.utils import as_bool, as_float, as_int
from ..data.base import Listing

# Subject keys accepted in a flat request (aliases map onto these)
SUBJECT_KEYS = frozenset({
    "listing_id", "lat", "lng", "price", "beds", "baths", "sqft", "property_type",
    "year_built", "lot_size", "garage_spaces", "pool", "waterfront", "road_type",
    "condition", "address", "city", "state",
})

_SUBJECT_ALIASES = {
    "latitude": "lat",
    "lon": "lng",
    "longitude": "lng",
    "mlsNumber": "listing_id",
    "mls_number": "listing_id",
    "living_area": "sqft",
    "lot_size_acres": "lot_size",
}

# Fields an ARV run may override on the subject
ARV_OVERRIDE_KEYS = frozenset({
    "price", "beds", "baths", "sqft", "year_built", "garage_spaces", "pool", "condition", "lot_size",
})


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MarketClassification(str, Enum):
    HOT = "hot"
    BALANCED = "balanced"
    COLD = "cold"
    UNKNOWN = "unknown"


def _coordinate(data: Mapping[str, Any], key: str, limit: float) -> float:
    raw = data.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidInput(key, "is required")
    value = as_float(raw)
    if value is None:
        raise InvalidInput(key, "must be a number")
    if not -limit <= value <= limit:
        raise InvalidInput(key, f"must be within [-{limit:g}, {limit:g}]")
    return value


def canonical_subject_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply key aliases so downstream code sees one spelling per field."""
    out = dict(data)
    for alias, key in _SUBJECT_ALIASES.items():
        if alias in out and key not in out:
            out[key] = out.pop(alias)
    return out


@dataclass(frozen=True)
class SubjectProperty:
    """The property being valued. Immutable for the duration of one run."""
    lat: float
    lng: float
    listing_id: Optional[str] = None
    price: Optional[float] = None
    beds: Optional[int] = None
    baths: Optional[float] = None
    sqft: Optional[float] = None
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    garage_spaces: Optional[int] = None
    pool: bool = False
    waterfront: bool = False
    road_type: Optional[str] = None
    condition: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SubjectProperty":
        """Build from a loose mapping; only coordinates are mandatory."""
        data = canonical_subject_mapping(data)
        lat = _coordinate(data, "lat", 90.0)
        lng = _coordinate(data, "lng", 180.0)

        def text(key):
            value = data.get(key)
            return str(value).strip() if value not in (None, "") else None

        property_type = text("property_type")
        if property_type and property_type.lower() == "all":
            property_type = None

        return cls(
            lat=lat,
            lng=lng,
            listing_id=text("listing_id"),
            price=as_float(data.get("price")),
            beds=as_int(data.get("beds")),
            baths=as_float(data.get("baths")),
            sqft=as_float(data.get("sqft")),
            property_type=property_type,
            year_built=as_int(data.get("year_built")),
            lot_size=as_float(data.get("lot_size")),
            garage_spaces=as_int(data.get("garage_spaces")),
            pool=bool(as_bool(data.get("pool"))),
            waterfront=bool(as_bool(data.get("waterfront"))),
            road_type=text("road_type"),
            condition=text("condition"),
            address=text("address") or "",
            city=text("city") or "",
            state=text("state") or "",
        )

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "SubjectProperty":
        """ARV mode: a copy with renovated attributes applied. Unknown keys are ignored."""
        if not overrides:
            return self
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in ARV_OVERRIDE_KEYS or value is None:
                continue
            if key in ("beds", "year_built", "garage_spaces"):
                parsed = as_int(value)
            elif key == "pool":
                parsed = as_bool(value)
            elif key == "condition":
                parsed = str(value).strip() or None
            else:
                parsed = as_float(value)
            if parsed is not None:
                changes[key] = parsed
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Adjustment:
    """One feature's dollar adjustment. Negative when the comp is the better property."""
    feature: str
    difference: float
    amount: float
    explanation: str
    capped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AdjustmentSet:
    items: List[Adjustment] = field(default_factory=list)
    total: float = 0.0
    adjusted_price: float = 0.0
    gross_pct: float = 0.0
    net_pct: float = 0.0
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    capped: bool = False
    # True when the square-footage difference has been priced in
    size_reconciled: bool = False


@dataclass
class ScoredComparable:
    listing: Listing
    distance_miles: float
    score: float
    deltas: Dict[str, Optional[float]] = field(default_factory=dict)
    similarities: Dict[str, float] = field(default_factory=dict)
    penalties: Dict[str, float] = field(default_factory=dict)
    price_per_sqft: Optional[float] = None
    adjustment: Optional[AdjustmentSet] = None

    @property
    def price(self) -> Optional[float]:
        return self.listing.price

    @property
    def adjusted_price(self) -> Optional[float]:
        if self.adjustment is not None:
            return self.adjustment.adjusted_price
        return self.price

    def value_per_sqft(self, subject_sqft: Optional[float]) -> Optional[float]:
        """
        $/sqft this comp implies for the subject. Once the size difference is
        priced in, the adjusted price already describes a subject-sized home.
        """
        if self.adjustment is not None and self.adjustment.size_reconciled and subject_sqft:
            return self.adjustment.adjusted_price / subject_sqft
        return self.price_per_sqft

    @property
    def abs_price_delta(self) -> float:
        delta = self.deltas.get("price")
        return abs(delta) if delta is not None else float("inf")

    @property
    def grade(self) -> str:
        pct = self.score * 100
        if pct >= 90:
            return "A"
        if pct >= 80:
            return "B"
        if pct >= 70:
            return "C"
        if pct >= 60:
            return "D"
        return "F"

    def to_dict(self) -> dict:
        out = self.listing.to_dict()
        out.update({
            "price": self.price,
            "distance_miles": round(self.distance_miles, 3),
            "similarity_score": self.score,
            "similarity_grade": self.grade,
            "price_per_sqft": self.price_per_sqft,
            "deltas": dict(self.deltas),
            "similarities": {k: round(v, 4) for k, v in self.similarities.items()},
            "penalties": dict(self.penalties),
        })
        adj = self.adjustment
        sqft = self.listing.sqft
        out.update({
            "adjusted_price": self.adjusted_price,
            "adjusted_price_per_sqft": round(self.adjusted_price / sqft, 2) if (adj and sqft) else self.price_per_sqft,
            "adjustments": [a.to_dict() for a in adj.items] if adj else [],
            "adjustment_total": adj.total if adj else 0.0,
            "adjustment_net_pct": adj.net_pct if adj else 0.0,
            "adjustment_gross_pct": adj.gross_pct if adj else 0.0,
            "adjustment_warnings": list(adj.warnings) if adj else [],
            "has_adjustment_caps": adj.capped if adj else False,
        })
        return out


@dataclass
class ValuationSummary:
    comparables_used: int = 0
    top_comps_count: int = 0
    low: Optional[float] = None
    mid: Optional[float] = None
    high: Optional[float] = None
    weighted_mid: Optional[float] = None
    avg_price_per_sqft: Optional[float] = None
    weighted_price_per_sqft: Optional[float] = None
    confidence_score: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    median_price: Optional[float] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_std_dev: Optional[float] = None
    avg_adjusted_price: Optional[float] = None
    median_adjusted_price: Optional[float] = None
    avg_distance_miles: Optional[float] = None
    avg_similarity: Optional[float] = None
    weight_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.comparables_used == 0

    def to_dict(self) -> dict:
        out = asdict(self)
        out["confidence_level"] = self.confidence_level.value
        out["insufficient_data"] = self.is_empty
        return out


@dataclass
class MarketContext:
    city: str
    state: str
    property_type: Optional[str]
    classification: MarketClassification = MarketClassification.UNKNOWN
    score: Optional[float] = None
    active_listings: int = 0
    pending_listings: int = 0
    avg_monthly_sales: Optional[float] = None
    months_of_supply: Optional[float] = None
    absorption_rate: Optional[float] = None
    median_close_price: Optional[float] = None
    avg_days_on_market: Optional[float] = None
    avg_sale_to_list_ratio: Optional[float] = None
    price_trend_pct: Optional[float] = None
    factors: List[str] = field(default_factory=list)
    degraded: bool = False

    @classmethod
    def unknown(cls, city: str, state: str, property_type: Optional[str], degraded: bool = True) -> "MarketContext":
        return cls(city=city, state=state, property_type=property_type, degraded=degraded)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["classification"] = self.classification.value
        return out
