"""
Geospatial candidate selection.

Cheap filters run first: the repository is queried with a bounding box,
status whitelist, lookback cutoff and property type; attribute filters run
in process; the haversine check runs last on what survives. Inventory can be
orders of magnitude larger than the final result set, so the expensive
distance computation only ever sees the pre-filtered subset.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple

from ..core.errors import UpstreamTimeout
from ..data.base import BoundingBox, InventoryRepository, Listing
from .filters import FilterCriteria
from .models import SubjectProperty

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(lat: float, lng: float, radius_miles: float) -> BoundingBox:
    """
    Smallest lat/lng box containing every point within radius_miles of
    (lat, lng). Widens to the full longitude range when the circle reaches a
    pole, and wraps (min_lng > max_lng) across the antimeridian.
    """
    angular = radius_miles / EARTH_RADIUS_MILES
    lat_r = math.radians(lat)
    min_lat = math.degrees(lat_r - angular)
    max_lat = math.degrees(lat_r + angular)

    if min_lat <= -90 or max_lat >= 90:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    ratio = math.sin(angular) / math.cos(lat_r)
    if ratio >= 1:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    d_lng = math.degrees(math.asin(ratio))
    min_lng = lng - d_lng
    max_lng = lng + d_lng
    if min_lng < -180:
        min_lng += 360
    if max_lng > 180:
        max_lng -= 360
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)


def lookback_cutoff(today: date, criteria: FilterCriteria) -> date:
    return today - timedelta(days=criteria.lookback_days)


def _in_range(value, lo, hi) -> bool:
    if lo is None and hi is None:
        return True
    if value is None:
        return False
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def passes_attribute_filters(listing: Listing, subject: SubjectProperty, c: FilterCriteria) -> bool:
    """In-process hard filters; all are cheap comparisons."""
    price = listing.price
    if price is None or price <= 0:
        return False

    if c.beds_exact and subject.beds is not None:
        if listing.beds != subject.beds:
            return False
    elif not _in_range(listing.beds, c.beds_min, c.beds_max):
        return False

    if c.baths_exact and subject.baths is not None:
        if listing.baths is None or abs(listing.baths - subject.baths) > 1e-9:
            return False
    elif not _in_range(listing.baths, c.baths_min, c.baths_max):
        return False

    if c.garage_exact and subject.garage_spaces is not None:
        if (listing.garage_spaces or 0) != subject.garage_spaces:
            return False
    elif not _in_range(listing.garage_spaces, c.garage_min, c.garage_max):
        return False

    if subject.year_built and listing.year_built is not None:
        if abs(listing.year_built - subject.year_built) > c.year_built_range:
            return False

    if not _in_range(listing.lot_size_acres, c.lot_size_min, c.lot_size_max):
        return False

    if c.pool_required is True and not listing.pool:
        return False
    if c.pool_required is False and listing.pool:
        return False
    if c.waterfront_only and not listing.waterfront:
        return False
    if c.same_city_only and subject.city and (listing.city or "").lower() != subject.city.lower():
        return False

    if c.max_dom is not None and listing.days_on_market is not None and listing.days_on_market > c.max_dom:
        return False

    if c.exclude_hoa and listing.hoa_fee:
        return False
    if (c.hoa_min is not None or c.hoa_max is not None) and not _in_range(listing.hoa_fee or 0.0, c.hoa_min, c.hoa_max):
        return False
    return True


@dataclass
class CandidateSelection:
    """Candidates within radius, each with its distance. Empty is a valid outcome."""
    candidates: List[Tuple[Listing, float]] = field(default_factory=list)
    examined: int = 0
    cutoff: Optional[date] = None
    box: Optional[BoundingBox] = None

    @property
    def found(self) -> bool:
        return bool(self.candidates)


class CandidateSelector:
    def __init__(self, repository: InventoryRepository, timeout: float):
        self.repository = repository
        self.timeout = timeout

    async def select(self, subject: SubjectProperty, criteria: FilterCriteria, today: date) -> CandidateSelection:
        box = bounding_box(subject.lat, subject.lng, criteria.radius)
        cutoff = lookback_cutoff(today, criteria)
        try:
            rows = await asyncio.wait_for(
                self.repository.listings_in_box(
                    box, criteria.statuses, cutoff, subject.property_type,
                    exclude_listing_id=subject.listing_id,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout("candidate_selector", self.timeout) from exc

        wanted = set(criteria.statuses)
        out: List[Tuple[Listing, float]] = []
        for listing in rows:
            # Repository results are re-checked; invariants hold whatever the backend returns
            if listing.status not in wanted:
                continue
            if subject.listing_id and listing.listing_id == subject.listing_id:
                continue
            event = listing.event_date
            if event is None or event < cutoff:
                continue
            if subject.property_type and (listing.property_type or "").lower() != subject.property_type.lower():
                continue
            if not passes_attribute_filters(listing, subject, criteria):
                continue
            distance = haversine_miles(subject.lat, subject.lng, listing.lat, listing.lng)
            if distance > criteria.radius:
                continue
            out.append((listing, distance))

        logger.info(
            "candidate selection complete",
            extra={"candidates": len(out), "listing_id": subject.listing_id},
        )
        return CandidateSelection(candidates=out, examined=len(rows), cutoff=cutoff, box=box)
