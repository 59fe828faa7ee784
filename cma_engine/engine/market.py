"""
Market context for the subject's area: inventory, pace and price direction
reduced to a 0-100 health score and a hot/balanced/cold label.

The calculation is independent of the comparable path. Callers run it
alongside candidate selection and swap in `MarketContext.unknown()` when it
fails or times out.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

import numpy as np

from ..core.cache import ResultCache, fingerprint
from ..core.config import settings
from ..core.errors import UpstreamTimeout
from ..core.finance import percent_change
from ..core.utils import utc_now
from ..data.base import InventoryRepository, Listing, ListingStatus
from .models import MarketClassification, MarketContext

logger = logging.getLogger(__name__)

HOT_THRESHOLD = 65
COLD_THRESHOLD = 40
SALES_WINDOW_MONTHS = 3

_PENDING = {ListingStatus.PENDING, ListingStatus.ACTIVE_UNDER_CONTRACT}


def classify(score: Optional[float]) -> MarketClassification:
    if score is None:
        return MarketClassification.UNKNOWN
    if score >= HOT_THRESHOLD:
        return MarketClassification.HOT
    if score < COLD_THRESHOLD:
        return MarketClassification.COLD
    return MarketClassification.BALANCED


def health_score(
    avg_dom: Optional[float],
    sale_to_list: Optional[float],
    months_of_supply: Optional[float],
    annualized_trend: Optional[float],
) -> tuple[int, List[str]]:
    """Start neutral at 50 and adjust per signal. Missing signals do not move the score."""
    score = 50
    factors: List[str] = []

    if avg_dom is not None:
        if avg_dom < 30:
            score += 10
            factors.append("Fast-moving market (low days on market)")
        elif avg_dom > 90:
            score -= 10
            factors.append("Slow market (high days on market)")

    if sale_to_list is not None:
        if sale_to_list >= 1.0:
            score += 10
            factors.append("Properties selling at or above list price")
        elif sale_to_list < 0.95:
            score -= 5
            factors.append("Properties selling below list price")

    if months_of_supply is not None:
        if months_of_supply < 3:
            score += 15
            factors.append("Low inventory (seller's market)")
        elif months_of_supply > 6:
            score -= 10
            factors.append("High inventory (buyer's market)")
        else:
            factors.append("Balanced inventory")

    if annualized_trend is not None:
        if annualized_trend > 10:
            score += 15
            factors.append("Strong price appreciation")
        elif annualized_trend > 5:
            score += 10
            factors.append("Healthy price growth")
        elif annualized_trend > 0:
            score += 5
            factors.append("Modest price growth")
        elif annualized_trend < -5:
            score -= 10
            factors.append("Price depreciation")

    return max(0, min(100, score)), factors


def monthly_medians(closed: List[Listing]) -> List[float]:
    """Median close price per calendar month, oldest month first."""
    buckets: Dict[tuple, List[float]] = defaultdict(list)
    for l in closed:
        buckets[(l.close_date.year, l.close_date.month)].append(l.close_price)
    return [float(np.median(buckets[k])) for k in sorted(buckets)]


def price_trend_pct(medians: List[float]) -> Optional[float]:
    """Second half of the monthly medians against the first half."""
    if len(medians) < 2:
        return None
    half = len(medians) // 2
    first = float(np.mean(medians[:half]))
    second = float(np.mean(medians[len(medians) - half:]))
    change = percent_change(first, second)
    return float(change) if change is not None else None


def build_context(
    listings: List[Listing],
    city: str,
    state: str,
    property_type: Optional[str],
    months: int,
    today: date,
) -> MarketContext:
    if not listings:
        return MarketContext.unknown(city, state, property_type, degraded=False)

    window_start = today - timedelta(days=months * 30)
    sales_start = today - timedelta(days=SALES_WINDOW_MONTHS * 30)

    active = sum(1 for l in listings if l.status == ListingStatus.ACTIVE)
    pending = sum(1 for l in listings if l.status in _PENDING)
    closed = [
        l for l in listings
        if l.status == ListingStatus.CLOSED and l.close_date is not None
        and window_start <= l.close_date <= today and l.close_price
    ]
    recent_sales = sum(1 for l in closed if l.close_date >= sales_start)

    avg_monthly_sales = round(recent_sales / SALES_WINDOW_MONTHS, 1) if recent_sales else None
    months_of_supply = round(active / avg_monthly_sales, 1) if avg_monthly_sales else None
    absorption = round(avg_monthly_sales * 100 / max(active, 1), 1) if avg_monthly_sales else None

    median_close = float(np.median([l.close_price for l in closed])) if closed else None
    doms = [l.days_on_market for l in closed if l.days_on_market is not None]
    avg_dom = round(float(np.mean(doms)), 1) if doms else None
    ratios = [l.close_price / l.list_price for l in closed if l.list_price]
    sale_to_list = round(float(np.mean(ratios)), 4) if ratios else None

    trend = price_trend_pct(monthly_medians(closed))
    annualized = trend / months * 12 if trend is not None else None

    score, factors = health_score(avg_dom, sale_to_list, months_of_supply, annualized)
    return MarketContext(
        city=city,
        state=state,
        property_type=property_type,
        classification=classify(score),
        score=score,
        active_listings=active,
        pending_listings=pending,
        avg_monthly_sales=avg_monthly_sales,
        months_of_supply=months_of_supply,
        absorption_rate=absorption,
        median_close_price=median_close,
        avg_days_on_market=avg_dom,
        avg_sale_to_list_ratio=sale_to_list,
        price_trend_pct=trend,
        factors=factors,
    )


class MarketContextCalculator:
    def __init__(
        self,
        repository: InventoryRepository,
        cache: Optional[ResultCache] = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.cache = cache if cache is not None else ResultCache(
            namespace="market", ttl_seconds=settings.MARKET_CACHE_TTL_SECONDS
        )
        self.timeout = timeout if timeout is not None else settings.MARKET_CONTEXT_TIMEOUT_SECONDS
        self.clock = clock

    async def compute(
        self,
        city: str,
        state: str = "",
        property_type: Optional[str] = None,
        months: int | None = None,
    ) -> MarketContext:
        months = max(1, min(60, months or settings.MARKET_CONTEXT_MONTHS))
        if not city:
            return MarketContext.unknown(city, state, property_type, degraded=False)

        key = fingerprint(
            {"city": city.lower(), "state": (state or "").lower()},
            {"property_type": (property_type or "").lower(), "months": months},
        )
        cached = self.cache.get(key)
        if cached is not None:
            return MarketContext(**{**cached, "classification": MarketClassification(cached["classification"])})

        today = self.clock().date()
        since = today - timedelta(days=months * 30)
        try:
            listings = await asyncio.wait_for(
                self.repository.area_listings(city, state, property_type, since),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout("market_context", self.timeout) from exc

        context = build_context(listings, city, state, property_type, months, today)
        logger.info(
            "market context computed",
            extra={"city": city, "state": state, "component": context.classification.value},
        )
        if context.classification != MarketClassification.UNKNOWN:
            self.cache.set(key, context.to_dict())
        return context
