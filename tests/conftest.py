import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from cma_engine.core.cache import ResultCache
from cma_engine.data.base import Listing, ListingStatus
from cma_engine.data.inventory_client import InMemoryInventory
from cma_engine.db import make_sessionmaker
from cma_engine.engine.market import MarketContextCalculator
from cma_engine.services.history import ValuationHistoryTracker
from cma_engine.services.session_store import CMASessionStore
from cma_engine.services.valuation_service import ComparableValuationService

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

# Subject sits in central Boston; comps are placed a few hundred metres away
SUBJECT_LAT = 42.3500
SUBJECT_LNG = -71.0700


class FixedClock:
    """Settable clock so tests can move time forward."""
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0) -> None:
        self.now = self.now + timedelta(days=days)


class SlowInventory(InMemoryInventory):
    """Repository that never answers inside any sane timeout."""
    def __init__(self, listings=(), delay: float = 1.0, slow_area: bool = True, slow_box: bool = False):
        super().__init__(listings)
        self.delay = delay
        self.slow_area = slow_area
        self.slow_box = slow_box

    async def listings_in_box(self, *args, **kwargs):
        if self.slow_box:
            await asyncio.sleep(self.delay)
        return await super().listings_in_box(*args, **kwargs)

    async def area_listings(self, *args, **kwargs):
        if self.slow_area:
            await asyncio.sleep(self.delay)
        return await super().area_listings(*args, **kwargs)


class CountingInventory(InMemoryInventory):
    def __init__(self, listings=()):
        super().__init__(listings)
        self.box_calls = 0

    async def listings_in_box(self, *args, **kwargs):
        self.box_calls += 1
        return await super().listings_in_box(*args, **kwargs)


@pytest.fixture
def today():
    return NOW.date()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_listing():
    """Factory for inventory listings with sensible defaults near the subject."""
    counter = {"n": 0}

    def _make(
        close_price: float | None = 500_000,
        status: ListingStatus = ListingStatus.CLOSED,
        days_ago: int = 30,
        lat: float = SUBJECT_LAT + 0.002,
        lng: float = SUBJECT_LNG + 0.002,
        listing_id: str | None = None,
        **overrides,
    ) -> Listing:
        counter["n"] += 1
        event = NOW.date() - timedelta(days=days_ago)
        values = dict(
            listing_id=listing_id or f"L{counter['n']:04d}",
            status=status,
            lat=lat,
            lng=lng,
            list_price=close_price,
            close_price=close_price if status == ListingStatus.CLOSED else None,
            beds=3,
            baths=2.0,
            sqft=2000,
            property_type="Single Family Residence",
            year_built=1995,
            lot_size_acres=0.25,
            garage_spaces=1,
            city="Boston",
            state="MA",
            list_date=event - timedelta(days=20) if status == ListingStatus.CLOSED else event,
            close_date=event if status == ListingStatus.CLOSED else None,
            days_on_market=20,
        )
        values.update(overrides)
        return Listing(**values)

    return _make


@pytest.fixture
def subject_params():
    return {
        "listing_id": "SUBJ-1",
        "lat": SUBJECT_LAT,
        "lng": SUBJECT_LNG,
        "price": 500_000,
        "beds": 3,
        "baths": 2,
        "sqft": 2000,
        "property_type": "Single Family Residence",
        "year_built": 1995,
        "lot_size": 0.25,
        "garage_spaces": 1,
        "address": "12 Main St",
        "city": "Boston",
        "state": "MA",
    }


@pytest.fixture
def session_factory():
    return make_sessionmaker("sqlite://")


@pytest.fixture
def local_cache():
    return ResultCache(namespace="test", ttl_seconds=1800, maxsize=128, use_redis=False)


@pytest.fixture
def build_service(local_cache, session_factory, clock):
    """Service wired to in-memory collaborators; pass a repository per test."""
    def _build(repository, market: bool = True, **kwargs) -> ComparableValuationService:
        market_calc = None
        if market:
            market_calc = MarketContextCalculator(
                repository,
                cache=ResultCache(namespace="test-market", ttl_seconds=60, use_redis=False),
                timeout=kwargs.pop("market_timeout", 1.0),
                clock=clock,
            )
        return ComparableValuationService(
            repository=repository,
            cache=local_cache,
            clock=clock,
            history=ValuationHistoryTracker(session_factory, clock=clock),
            sessions=CMASessionStore(session_factory, clock=clock),
            market=market_calc,
            **kwargs,
        )
    return _build


@pytest.fixture(autouse=True)
def reset_rate_limits():
    from cma_engine.core import security
    security._rate_counters.clear()
    yield
