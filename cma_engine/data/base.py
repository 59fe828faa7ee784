from typing import Protocol, List, Optional, Sequence
from dataclasses import dataclass, field, fields, asdict
from datetime import date
from enum import Enum

# ----- Enums -----

class ListingStatus(str, Enum):
    ACTIVE = "Active"
    PENDING = "Pending"
    ACTIVE_UNDER_CONTRACT = "Active Under Contract"
    CLOSED = "Closed"
    WITHDRAWN = "Withdrawn"
    EXPIRED = "Expired"
    CANCELED = "Canceled"
    COMING_SOON = "Coming Soon"

    @classmethod
    def parse(cls, value) -> Optional["ListingStatus"]:
        """Case/space-insensitive lookup; None when unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = " ".join(value.replace("_", " ").split()).lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

# ----- Data shapes (thin & explicit) -----

@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lng > self.max_lng

    def contains(self, lat: float, lng: float) -> bool:
        if not (self.min_lat <= lat <= self.max_lat):
            return False
        if self.crosses_antimeridian:
            return lng >= self.min_lng or lng <= self.max_lng
        return self.min_lng <= lng <= self.max_lng

@dataclass(frozen=True)
class Listing:
    """
    One inventory record (a comparable candidate before scoring).
    Prices in currency units, area in square feet, lot size in acres.
    """
    listing_id: str
    status: ListingStatus
    lat: float
    lng: float
    list_price: Optional[float] = None
    close_price: Optional[float] = None
    beds: Optional[int] = None
    baths: Optional[float] = None
    sqft: Optional[float] = None
    property_type: str = ""
    year_built: Optional[int] = None
    lot_size_acres: Optional[float] = None
    garage_spaces: Optional[int] = None
    pool: bool = False
    waterfront: bool = False
    hoa_fee: Optional[float] = None
    road_type: Optional[str] = None
    condition: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    list_date: Optional[date] = None
    close_date: Optional[date] = None
    days_on_market: Optional[int] = None

    @property
    def price(self) -> Optional[float]:
        """Sale price when closed, otherwise asking price."""
        if self.close_price:
            return self.close_price
        return self.list_price

    @property
    def event_date(self) -> Optional[date]:
        """Date the lookback window is measured against."""
        if self.status == ListingStatus.CLOSED:
            return self.close_date
        return self.list_date or self.close_date

    def to_dict(self) -> dict:
        out = asdict(self)
        out["status"] = self.status.value
        out["list_date"] = self.list_date.isoformat() if self.list_date else None
        out["close_date"] = self.close_date.isoformat() if self.close_date else None
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Listing":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        status = ListingStatus.parse(values.get("status"))
        if status is None:
            raise ValueError(f"unknown listing status: {values.get('status')!r}")
        values["status"] = status
        # Upstream rows carry JSON null for blank text columns
        for key in ("property_type", "address", "city", "state"):
            if values.get(key) is None and key in values:
                values[key] = ""
        for key in ("list_date", "close_date"):
            if isinstance(values.get(key), str):
                values[key] = date.fromisoformat(values[key][:10])
        return cls(**values)

# ----- Protocols (interfaces) -----

class InventoryRepository(Protocol):
    async def listings_in_box(
        self,
        box: BoundingBox,
        statuses: Sequence[ListingStatus],
        since: Optional[date],
        property_type: Optional[str],
        exclude_listing_id: Optional[str] = None,
    ) -> List[Listing]: ...

    async def area_listings(
        self,
        city: str,
        state: Optional[str],
        property_type: Optional[str],
        since: date,
    ) -> List[Listing]: ...
