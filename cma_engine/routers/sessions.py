from fastapi import APIRouter, Depends, HTTPException, Query, Response
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT, HTTP_401_UNAUTHORIZED

from ..schemas import ArtifactIn, SessionCreate, SessionRerun, SessionUpdate
from ..services.valuation_service import ComparableValuationService
from ..core.security import owner_identity, rate_limit, require_api_key
from .deps import service_dep

router = APIRouter(dependencies=[Depends(require_api_key), Depends(rate_limit)])

@router.post("/cma/sessions", status_code=HTTP_201_CREATED)
async def create_session(
    body: SessionCreate,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    return await svc.create_session(
        body.params,
        name=body.name,
        owner_id=owner_id,
        description=body.description,
        is_standalone=body.is_standalone,
        overrides=body.arv_overrides,
    )

@router.get("/cma/sessions")
def list_sessions(
    favorites: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    if owner_id is None:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="X-Owner-Id header is required")
    store = svc.sessions
    return {
        "sessions": store.list_for_owner(owner_id, favorites_only=favorites, limit=limit, offset=offset),
        "total": store.count_for_owner(owner_id, favorites_only=favorites),
        "limit": limit,
        "offset": offset,
    }

@router.get("/cma/sessions/{session_id}")
def get_session(session_id: str, svc: ComparableValuationService = Depends(service_dep)):
    return svc.sessions.get(session_id)

@router.patch("/cma/sessions/{session_id}")
def update_session(
    session_id: str,
    body: SessionUpdate,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    return svc.sessions.update_metadata(session_id, owner_id, body.model_dump(exclude_none=True))

@router.delete("/cma/sessions/{session_id}", status_code=HTTP_204_NO_CONTENT)
def delete_session(
    session_id: str,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    svc.sessions.delete(session_id, owner_id)
    return Response(status_code=HTTP_204_NO_CONTENT)

@router.post("/cma/sessions/{session_id}/favorite")
def toggle_favorite(
    session_id: str,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    return svc.sessions.toggle_favorite(session_id, owner_id)

@router.post("/cma/sessions/{session_id}/claim")
def claim_session(
    session_id: str,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    if owner_id is None:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="X-Owner-Id header is required")
    return svc.sessions.claim(session_id, owner_id)

@router.post("/cma/sessions/{session_id}/artifact")
def attach_artifact(
    session_id: str,
    body: ArtifactIn,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    return svc.sessions.attach_artifact(session_id, owner_id, body.artifact_path)

@router.post("/cma/sessions/{session_id}/rerun", status_code=HTTP_201_CREATED)
async def rerun_session(
    session_id: str,
    body: SessionRerun | None = None,
    owner_id: str | None = Depends(owner_identity),
    svc: ComparableValuationService = Depends(service_dep),
):
    body = body or SessionRerun()
    return await svc.rerun_session(session_id, owner_id=owner_id, filters=body.filters, name=body.name)

@router.get("/cma/shared/{slug}")
def shared_session(slug: str, svc: ComparableValuationService = Depends(service_dep)):
    return svc.sessions.get_by_slug(slug)

@router.get("/cma/history/{listing_id}")
def valuation_history(
    listing_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    svc: ComparableValuationService = Depends(service_dep),
):
    return {
        "listing_id": listing_id,
        "history": svc.history.history(listing_id, limit),
        "statistics": svc.history.statistics(listing_id),
    }

@router.get("/cma/history/{listing_id}/trend")
def valuation_trend(
    listing_id: str,
    months: int = Query(default=12, ge=3, le=36),
    svc: ComparableValuationService = Depends(service_dep),
):
    return svc.history.value_trend(listing_id, months)
