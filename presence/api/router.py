from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, Optional
from .dependencies import get_pipeline
from .schemas import (
    CancelEventRequest,
    ClaimBody,
    ClaimMessageResponse,
    ClaimResponse,
    CollectionResponse,
    EventStatusResponse,
    RegisterEventRequest,
    RegisterEventResponse,
)
from ..auth.api_key import verify_api_key
from ..models import ClaimRequest, ClaimVerification, Discovery
from ..services.pipeline import ClaimPipeline

router = APIRouter(prefix="/v1")


@router.post("/events", response_model=RegisterEventResponse, status_code=201)
async def register_event(
    req: RegisterEventRequest,
    pipeline: ClaimPipeline = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key),
):
    result = await pipeline.register_event(
        organizer_identity=req.organizer_identity,
        metadata_ref=req.metadata_ref,
        geofence=req.geofence.to_geofence() if req.geofence else None,
        name=req.name,
        starts_at=req.starts_at,
        ends_at=req.ends_at,
        claim_expiry_minutes=req.claim_expiry_minutes,
    )
    return RegisterEventResponse(**result.model_dump())


@router.get("/events/discover", response_model=Discovery)
async def discover_events(
    latitude: Optional[float] = Query(default=None, ge=-90, le=90),
    longitude: Optional[float] = Query(default=None, ge=-180, le=180),
    radius_km: float = Query(default=50.0, gt=0),
    pipeline: ClaimPipeline = Depends(get_pipeline),
):
    return await pipeline.discover_events(latitude=latitude, longitude=longitude, radius_km=radius_km)


@router.post("/events/{event_id}/cancel", response_model=EventStatusResponse)
async def cancel_event(
    event_id: str,
    req: CancelEventRequest,
    pipeline: ClaimPipeline = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key),
):
    event = await pipeline.cancel_event(event_id, req.organizer_identity)
    return EventStatusResponse(event_id=event.id, ledger_event_id=event.ledger_event_id, status=event.status.value)


@router.get("/claims/{claim_token}/message", response_model=ClaimMessageResponse)
async def claim_message(claim_token: str, pipeline: ClaimPipeline = Depends(get_pipeline)):
    message = await pipeline.claim_message(claim_token)
    return ClaimMessageResponse(claim_token=claim_token, message=message)


@router.post("/claims/{claim_token}", response_model=ClaimResponse, status_code=201)
async def claim_badge(claim_token: str, body: ClaimBody, pipeline: ClaimPipeline = Depends(get_pipeline)):
    # LedgerTimeout surfaces as 202 pending through the exception handlers
    result = await pipeline.claim(ClaimRequest(claim_token=claim_token, **body.model_dump()))
    return ClaimResponse(**result.model_dump())


@router.get("/collection/{identity}", response_model=CollectionResponse)
async def collection(identity: str, pipeline: ClaimPipeline = Depends(get_pipeline)):
    badges = await pipeline.list_badges(identity)
    return CollectionResponse(identity=identity.lower(), total=len(badges), badges=badges)


@router.get("/metadata/{ledger_event_id}")
async def metadata(ledger_event_id: int, pipeline: ClaimPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    return await pipeline.get_metadata(ledger_event_id)


@router.get("/verify/{claim_token}/{identity}", response_model=ClaimVerification)
async def verify_claim(claim_token: str, identity: str, pipeline: ClaimPipeline = Depends(get_pipeline)):
    return await pipeline.verify_claim(claim_token, identity)
