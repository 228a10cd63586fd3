from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from ..models import Badge, Geofence


class GeofenceIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_meters: float = Field(..., gt=0, description="Allowed distance from the center")

    def to_geofence(self) -> Geofence:
        return Geofence(**self.model_dump())


class RegisterEventRequest(BaseModel):
    organizer_identity: str = Field(..., description="Organizer identity handle (hex address)")
    metadata_ref: str = Field(..., min_length=1, description="URI of the badge metadata document")
    geofence: Optional[GeofenceIn] = None
    name: Optional[str] = Field(default=None, max_length=200)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    claim_expiry_minutes: Optional[int] = Field(default=None, ge=0)


class RegisterEventResponse(BaseModel):
    event_id: str
    ledger_event_id: int
    claim_token: str
    claim_link: str
    message: str = "Event registered successfully"


class CancelEventRequest(BaseModel):
    organizer_identity: str


class EventStatusResponse(BaseModel):
    event_id: str
    ledger_event_id: int
    status: str


class ClaimBody(BaseModel):
    attendee_identity: str
    signature: str = Field(..., min_length=1)
    attendee_latitude: float
    attendee_longitude: float


class ClaimResponse(BaseModel):
    status: Literal["recorded"] = "recorded"
    event_id: str
    ledger_event_id: int
    attendee_identity: str
    transaction_hash: str
    token_id: Optional[int] = None
    claimed_at: datetime


class ClaimMessageResponse(BaseModel):
    claim_token: str
    message: str


class CollectionResponse(BaseModel):
    identity: str
    total: int
    badges: List[Badge]
