import logging

from fastapi import APIRouter, Depends

from ..schemas import InventoryEvent
from ..services.valuation_service import ComparableValuationService
from ..core.security import require_api_key
from .deps import service_dep

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/inventory/events")
def inventory_event(
    body: InventoryEvent,
    _auth = Depends(require_api_key),
    svc: ComparableValuationService = Depends(service_dep),
):
    """Listing inserts/updates/deletes upstream. Drops every cached valuation."""
    purged = svc.invalidate(body.event)
    logger.info("inventory event received", extra={"component": body.event, "candidates": len(body.listing_ids)})
    return {"event": body.event, "purged": purged}
