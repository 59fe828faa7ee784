import json

from fastapi import APIRouter, Body, Depends, Header, Query, Response

from ..schemas import ComparablesResponse, MarketContextOut
from ..services.valuation_service import ComparableValuationService
from ..core.security import owner_identity, rate_limit, require_api_key
from ..core.utils import weak_etag
from .deps import service_dep

router = APIRouter()

def _etag(payload: dict) -> str:
    # Cache status and warnings describe this response, not the valuation
    body = {k: v for k, v in payload.items() if k not in ("cached", "warnings", "etag")}
    return weak_etag(json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))

@router.post("/comparables", response_model=ComparablesResponse)
async def post_comparables(
    response: Response,
    params: dict = Body(...),
    if_none_match: str | None = Header(default=None, alias="if-none-match"),
    owner_id: str | None = Depends(owner_identity),
    _auth = Depends(require_api_key),     # API key guard
    _lim  = Depends(rate_limit),          # Rate limiting
    svc: ComparableValuationService = Depends(service_dep),
):
    """
    Flat key/value body: subject fields (lat, lng, price, sqft, ...) next to
    filter fields (radius, price_range_pct, statuses, ...). An optional
    `arv_overrides` object values the subject as renovated.
    """
    params = dict(params)
    overrides = params.pop("arv_overrides", None)
    payload = await svc.run(params, owner_id=owner_id, overrides=overrides if isinstance(overrides, dict) else None)
    etag = _etag(payload)
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    payload["etag"] = etag
    response.headers["ETag"] = etag
    return payload

@router.get("/market-context", response_model=MarketContextOut)
async def get_market_context(
    city: str = Query(..., min_length=1),
    state: str = Query(default=""),
    property_type: str | None = Query(default=None),
    months: int = Query(default=12, ge=1, le=60),
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: ComparableValuationService = Depends(service_dep),
):
    return await svc.market_context(city, state, property_type, months)
