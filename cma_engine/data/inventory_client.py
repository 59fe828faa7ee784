import json
import logging
import math
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

import httpx

from .base import BoundingBox, InventoryRepository, Listing, ListingStatus
from ..core.config import settings
from ..core.utils import fnv1a_32, seeded_rand

logger = logging.getLogger(__name__)

InventoryListener = Callable[[str], None]


def _matches_type(listing: Listing, property_type: Optional[str]) -> bool:
    if not property_type or property_type.lower() == "all":
        return True
    return (listing.property_type or "").lower() == property_type.lower()


class InMemoryInventory(InventoryRepository):
    """
    Inventory held in process. Used for embedding, fixtures and the `memory`
    provider. Mutations notify listeners (the result cache purges on them).
    """
    def __init__(self, listings: Iterable[Listing] = ()):
        self._listings: dict[str, Listing] = {l.listing_id: l for l in listings}
        self._listeners: list[InventoryListener] = []

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryInventory":
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
        logger.info("loaded %d listings from %s", len(rows), path)
        return cls(Listing.from_dict(r) for r in rows)

    def subscribe(self, listener: InventoryListener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: str) -> None:
        for listener in self._listeners:
            listener(event)

    def upsert(self, listing: Listing) -> None:
        self._listings[listing.listing_id] = listing
        self._notify("listing_upserted")

    def bulk_load(self, listings: Iterable[Listing], replace: bool = False) -> int:
        if replace:
            self._listings.clear()
        count = 0
        for listing in listings:
            self._listings[listing.listing_id] = listing
            count += 1
        self._notify("bulk_import")
        return count

    def remove(self, listing_id: str) -> None:
        if self._listings.pop(listing_id, None) is not None:
            self._notify("listing_removed")

    def __len__(self) -> int:
        return len(self._listings)

    async def listings_in_box(
        self,
        box: BoundingBox,
        statuses: Sequence[ListingStatus],
        since: Optional[date],
        property_type: Optional[str],
        exclude_listing_id: Optional[str] = None,
    ) -> List[Listing]:
        wanted = set(statuses)
        out = []
        for listing in self._listings.values():
            if listing.listing_id == exclude_listing_id:
                continue
            if listing.status not in wanted:
                continue
            if not box.contains(listing.lat, listing.lng):
                continue
            if since is not None and (listing.event_date is None or listing.event_date < since):
                continue
            if not _matches_type(listing, property_type):
                continue
            out.append(listing)
        return out

    async def area_listings(
        self,
        city: str,
        state: Optional[str],
        property_type: Optional[str],
        since: date,
    ) -> List[Listing]:
        out = []
        for listing in self._listings.values():
            if (listing.city or "").lower() != city.lower():
                continue
            if state and (listing.state or "").lower() != state.lower():
                continue
            if not _matches_type(listing, property_type):
                continue
            # Current inventory always counts; history only inside the window
            if listing.status == ListingStatus.CLOSED and (listing.close_date is None or listing.close_date < since):
                continue
            out.append(listing)
        return out


class MockInventory(InventoryRepository):
    """
    Synthetic listings near the queried area. Prices/attributes are plausible
    but fake, and deterministic for a given location.
    """
    def __init__(self, per_query: int = 40, today: Optional[date] = None):
        self.per_query = per_query
        self._today = today

    def _generate(self, lat: float, lng: float, spread_lat: float, spread_lng: float,
                  city: str = "", state: str = "", property_type: Optional[str] = None) -> List[Listing]:
        seed = fnv1a_32(f"{round(lat, 3)},{round(lng, 3)}")
        today = self._today or date.today()
        statuses = list(ListingStatus)
        out: List[Listing] = []
        for i in range(self.per_query):
            r = seeded_rand(seed + i * 101, 12)
            status = ListingStatus.CLOSED if r[0] < 0.6 else statuses[int(r[1] * len(statuses)) % len(statuses)]
            sqft = 900 + int(r[2] * 2600)
            ppsf = 220 + r[3] * 260
            price = round(sqft * ppsf, -3)
            list_date = today - timedelta(days=int(r[4] * 540))
            dom = 5 + int(r[5] * 120)
            close_date = list_date + timedelta(days=dom) if status == ListingStatus.CLOSED else None
            if close_date is not None and close_date > today:
                close_date = today
            out.append(Listing(
                listing_id=f"MOCK-{seed:08x}-{i:03d}",
                status=status,
                lat=lat + (r[6] - 0.5) * 2 * spread_lat,
                lng=lng + (r[7] - 0.5) * 2 * spread_lng,
                list_price=price * (0.97 + r[8] * 0.08),
                close_price=price if status == ListingStatus.CLOSED else None,
                beds=2 + int(r[9] * 4),
                baths=1 + round(r[10] * 4) / 2,
                sqft=sqft,
                property_type=property_type or ("Single Family Residence" if i % 3 else "Condominium"),
                year_built=1920 + int(r[11] * 103),
                lot_size_acres=round(0.05 + r[2] * 0.6, 2),
                garage_spaces=int(r[9] * 3),
                pool=r[10] > 0.85,
                waterfront=r[11] > 0.95,
                city=city,
                state=state,
                list_date=list_date,
                close_date=close_date,
                days_on_market=dom,
            ))
        return out

    async def listings_in_box(
        self,
        box: BoundingBox,
        statuses: Sequence[ListingStatus],
        since: Optional[date],
        property_type: Optional[str],
        exclude_listing_id: Optional[str] = None,
    ) -> List[Listing]:
        center_lat = (box.min_lat + box.max_lat) / 2
        if box.crosses_antimeridian:
            center_lng = box.min_lng
            spread_lng = 0.01
        else:
            center_lng = (box.min_lng + box.max_lng) / 2
            spread_lng = (box.max_lng - box.min_lng) / 2
        generated = self._generate(center_lat, center_lng, (box.max_lat - box.min_lat) / 2, spread_lng,
                                   property_type=property_type)
        wanted = set(statuses)
        return [
            l for l in generated
            if l.status in wanted and box.contains(l.lat, l.lng)
            and (since is None or (l.event_date is not None and l.event_date >= since))
        ]

    async def area_listings(
        self,
        city: str,
        state: Optional[str],
        property_type: Optional[str],
        since: date,
    ) -> List[Listing]:
        seed = fnv1a_32(f"{city.lower()},{(state or '').lower()}")
        lat = 25.0 + seeded_rand(seed, 1)[0] * 22.0
        lng = -122.0 + seeded_rand(seed + 1, 1)[0] * 50.0
        generated = self._generate(lat, lng, 0.05, 0.05 / max(math.cos(math.radians(lat)), 0.1),
                                   city=city, state=state or "", property_type=property_type)
        return [
            l for l in generated
            if l.status != ListingStatus.CLOSED or (l.close_date is not None and l.close_date >= since)
        ]


class HttpInventory(InventoryRepository):
    """
    Client for the listings service that owns the inventory tables.
    """
    def __init__(self, base_url: str, timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.REPOSITORY_TIMEOUT_SECONDS

    async def _fetch(self, path: str, params: dict) -> List[Listing]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.get(f"{self.base_url}{path}", params=params)
            r.raise_for_status()
            return [Listing.from_dict(i) for i in r.json()]

    async def listings_in_box(
        self,
        box: BoundingBox,
        statuses: Sequence[ListingStatus],
        since: Optional[date],
        property_type: Optional[str],
        exclude_listing_id: Optional[str] = None,
    ) -> List[Listing]:
        params = {
            "min_lat": box.min_lat, "max_lat": box.max_lat,
            "min_lng": box.min_lng, "max_lng": box.max_lng,
            "status": [s.value for s in statuses],
        }
        if since is not None:
            params["since"] = since.isoformat()
        if property_type:
            params["property_type"] = property_type
        if exclude_listing_id:
            params["exclude"] = exclude_listing_id
        return await self._fetch("/listings/search", params)

    async def area_listings(
        self,
        city: str,
        state: Optional[str],
        property_type: Optional[str],
        since: date,
    ) -> List[Listing]:
        params = {"city": city, "since": since.isoformat()}
        if state:
            params["state"] = state
        if property_type:
            params["property_type"] = property_type
        return await self._fetch("/listings/area", params)


def inventory_client() -> InventoryRepository:
    """
    Factory picks the repository from env flags.
    """
    if settings.INVENTORY_PROVIDER == "http" and settings.INVENTORY_BASE_URL:
        return HttpInventory(settings.INVENTORY_BASE_URL)
    if settings.INVENTORY_PROVIDER == "memory":
        if settings.INVENTORY_PATH:
            return InMemoryInventory.from_json_file(settings.INVENTORY_PATH)
        return InMemoryInventory()
    return MockInventory()
