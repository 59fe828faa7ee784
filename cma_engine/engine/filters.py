"""
Filter normalisation for comparable searches.

Turns an untyped, partially populated parameter bag into a fully populated,
range-clamped `FilterCriteria`. The function is total: bad input is clamped
or defaulted, never rejected, so an unbounded radius or limit cannot reach
the selector.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from ..core.utils import as_bool, as_float, as_int
from ..data.base import ListingStatus


class SortKey(str, Enum):
    SIMILARITY = "similarity"
    PRICE = "price"
    DISTANCE = "distance"
    DATE = "date"


# (default, min, max)
RADIUS_MILES = (3.0, 0.5, 100.0)
PRICE_RANGE_PCT = (15, 1, 100)
SQFT_RANGE_PCT = (20, 1, 100)
ROOM_COUNT = (None, 0, 20)
YEAR_BUILT_RANGE = (10, 1, 100)
LOT_SIZE_ACRES = (None, 0.0, 10000.0)
MONTHS_BACK = (12, 1, 60)
MAX_DOM = (None, 0, 3650)
HOA_FEE = (None, 0.0, 100000.0)
RESULT_LIMIT = (20, 1, 100)
TOP_N = (5, 1, 25)

DEFAULT_STATUSES: Tuple[ListingStatus, ...] = (ListingStatus.CLOSED,)

# Keys the normaliser understands; everything else in a flat request is ignored
FILTER_KEYS = frozenset({
    "radius", "price_range_pct", "sqft_range_pct",
    "beds_min", "beds_max", "beds_exact",
    "baths_min", "baths_max", "baths_exact",
    "garage_min", "garage_max", "garage_exact",
    "year_built_range", "lot_size_min", "lot_size_max",
    "pool_required", "waterfront_only", "same_city_only",
    "statuses", "months_back", "max_dom",
    "hoa_min", "hoa_max", "exclude_hoa",
    "sort_by", "limit", "top_n",
})

# Aliases accepted from older clients
_ALIASES = {
    "time_range_months": "months_back",
    "dom_max": "max_dom",
    "status": "statuses",
    "waterfront_required": "waterfront_only",
}


@dataclass(frozen=True)
class FilterCriteria:
    radius: float = RADIUS_MILES[0]
    price_range_pct: int = PRICE_RANGE_PCT[0]
    sqft_range_pct: int = SQFT_RANGE_PCT[0]
    beds_min: Optional[int] = None
    beds_max: Optional[int] = None
    beds_exact: bool = False
    baths_min: Optional[float] = None
    baths_max: Optional[float] = None
    baths_exact: bool = False
    garage_min: Optional[int] = None
    garage_max: Optional[int] = None
    garage_exact: bool = False
    year_built_range: int = YEAR_BUILT_RANGE[0]
    lot_size_min: Optional[float] = None
    lot_size_max: Optional[float] = None
    pool_required: Optional[bool] = None
    waterfront_only: bool = False
    same_city_only: bool = False
    statuses: Tuple[ListingStatus, ...] = DEFAULT_STATUSES
    months_back: int = MONTHS_BACK[0]
    max_dom: Optional[int] = None
    hoa_min: Optional[float] = None
    hoa_max: Optional[float] = None
    exclude_hoa: bool = False
    sort_by: SortKey = SortKey.SIMILARITY
    limit: int = RESULT_LIMIT[0]
    top_n: int = TOP_N[0]

    @property
    def lookback_days(self) -> int:
        return self.months_back * 30

    def to_dict(self) -> dict:
        """Canonical JSON-ready mapping (enum values, statuses in enum order)."""
        out = asdict(self)
        out["statuses"] = [s.value for s in self.statuses]
        out["sort_by"] = self.sort_by.value
        return out


def _clamp(value, bounds):
    default, lo, hi = bounds
    if value is None:
        return default
    return max(lo, min(hi, value))


def _num(raw: Mapping[str, Any], key: str, bounds, integer: bool = False):
    parsed = as_int(raw.get(key)) if integer else as_float(raw.get(key))
    return _clamp(parsed, bounds)


def _opt_range(raw, lo_key, hi_key, bounds, integer=False):
    """Optional min/max pair, clamped and reordered when swapped."""
    lo = _num(raw, lo_key, bounds, integer)
    hi = _num(raw, hi_key, bounds, integer)
    if lo is not None and hi is not None and lo > hi:
        lo, hi = hi, lo
    return lo, hi


def _flag(raw: Mapping[str, Any], key: str, default: bool = False) -> bool:
    parsed = as_bool(raw.get(key))
    return default if parsed is None else parsed


def parse_statuses(value) -> Tuple[ListingStatus, ...]:
    """
    Status whitelist from a list or comma-separated string. Unknown entries
    are dropped; nothing recognisable fails closed to Closed only.
    """
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        return DEFAULT_STATUSES
    found = {ListingStatus.parse(item.strip() if isinstance(item, str) else item) for item in items}
    found.discard(None)
    if not found:
        return DEFAULT_STATUSES
    # Enum declaration order keeps the tuple canonical
    return tuple(s for s in ListingStatus if s in found)


def normalize_filters(raw: Optional[Mapping[str, Any]] = None) -> FilterCriteria:
    if not isinstance(raw, Mapping):
        raw = {}
    raw = dict(raw)
    for alias, key in _ALIASES.items():
        if alias in raw and key not in raw:
            raw[key] = raw[alias]

    beds_min, beds_max = _opt_range(raw, "beds_min", "beds_max", ROOM_COUNT, integer=True)
    baths_min, baths_max = _opt_range(raw, "baths_min", "baths_max", ROOM_COUNT)
    garage_min, garage_max = _opt_range(raw, "garage_min", "garage_max", ROOM_COUNT, integer=True)
    lot_min, lot_max = _opt_range(raw, "lot_size_min", "lot_size_max", LOT_SIZE_ACRES)
    hoa_min, hoa_max = _opt_range(raw, "hoa_min", "hoa_max", HOA_FEE)

    try:
        sort_by = SortKey(str(raw.get("sort_by", SortKey.SIMILARITY.value)).strip().lower())
    except ValueError:
        sort_by = SortKey.SIMILARITY

    return FilterCriteria(
        radius=float(_num(raw, "radius", RADIUS_MILES)),
        price_range_pct=_num(raw, "price_range_pct", PRICE_RANGE_PCT, integer=True),
        sqft_range_pct=_num(raw, "sqft_range_pct", SQFT_RANGE_PCT, integer=True),
        beds_min=beds_min,
        beds_max=beds_max,
        beds_exact=_flag(raw, "beds_exact"),
        baths_min=baths_min,
        baths_max=baths_max,
        baths_exact=_flag(raw, "baths_exact"),
        garage_min=garage_min,
        garage_max=garage_max,
        garage_exact=_flag(raw, "garage_exact"),
        year_built_range=_num(raw, "year_built_range", YEAR_BUILT_RANGE, integer=True),
        lot_size_min=lot_min,
        lot_size_max=lot_max,
        pool_required=as_bool(raw.get("pool_required")) if raw.get("pool_required") not in (None, "") else None,
        waterfront_only=_flag(raw, "waterfront_only"),
        same_city_only=_flag(raw, "same_city_only"),
        statuses=parse_statuses(raw.get("statuses")),
        months_back=_num(raw, "months_back", MONTHS_BACK, integer=True),
        max_dom=_num(raw, "max_dom", MAX_DOM, integer=True),
        hoa_min=hoa_min,
        hoa_max=hoa_max,
        exclude_hoa=_flag(raw, "exclude_hoa"),
        sort_by=sort_by,
        limit=_num(raw, "limit", RESULT_LIMIT, integer=True),
        top_n=_num(raw, "top_n", TOP_N, integer=True),
    )
