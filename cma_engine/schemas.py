from typing import Any

from pydantic import BaseModel, Field

class SummaryOut(BaseModel):
    comparables_used: int
    top_comps_count: int
    low: float | None = None
    mid: float | None = None
    high: float | None = None
    weighted_mid: float | None = None
    avg_price_per_sqft: float | None = None
    weighted_price_per_sqft: float | None = None
    confidence_score: float = Field(ge=0, le=100)
    confidence_level: str
    median_price: float | None = None
    price_min: float | None = None
    price_max: float | None = None
    price_std_dev: float | None = None
    avg_adjusted_price: float | None = None
    median_adjusted_price: float | None = None
    avg_distance_miles: float | None = None
    avg_similarity: float | None = None
    weight_breakdown: list[dict] = []
    insufficient_data: bool = False

class MarketContextOut(BaseModel):
    city: str
    state: str
    property_type: str | None = None
    classification: str
    score: float | None = None
    active_listings: int = 0
    pending_listings: int = 0
    avg_monthly_sales: float | None = None
    months_of_supply: float | None = None
    absorption_rate: float | None = None
    median_close_price: float | None = None
    avg_days_on_market: float | None = None
    avg_sale_to_list_ratio: float | None = None
    price_trend_pct: float | None = None
    factors: list[str] = []
    degraded: bool = False

class ComparablesResponse(BaseModel):
    fingerprint: str
    subject_property: dict
    arv_overrides: dict = {}
    filters_applied: dict
    comparables: list[dict]
    summary: SummaryOut
    market_context: MarketContextOut
    candidates_examined: int = 0
    cached: bool = False
    warnings: list[str] = []
    etag: str | None = None

class SessionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_standalone: bool = False
    params: dict[str, Any]
    arv_overrides: dict[str, Any] | None = None

class SessionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_favorite: bool | None = None

class SessionRerun(BaseModel):
    filters: dict[str, Any] | None = None
    name: str | None = None

class ArtifactIn(BaseModel):
    artifact_path: str = Field(min_length=1, max_length=1024)

class InventoryEvent(BaseModel):
    event: str = Field(default="inventory_changed", min_length=1)
    listing_ids: list[str] = []

class MortgageRequest(BaseModel):
    price: float = Field(gt=0)
    down_payment_pct: float = Field(default=20, ge=0, le=100)
    annual_rate_pct: float = Field(default=6.5, ge=0, le=30)
    years: int = Field(default=30, ge=1, le=50)
    property_tax_monthly: float = Field(default=0, ge=0)
    insurance_monthly: float = Field(default=0, ge=0)
    hoa_monthly: float = Field(default=0, ge=0)
    pmi_rate_pct: float = Field(default=0.5, ge=0, le=5)
    closing_cost_pct: float = Field(default=3, ge=0, le=20)
