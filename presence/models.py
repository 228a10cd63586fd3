"""
Domain models for events, claims and claim requests.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    COMMITTED = "committed"


class Geofence(BaseModel):
    """Circular region an attendee must be inside to claim"""
    latitude: float
    longitude: float
    radius_meters: float


class Event(BaseModel):
    """
    A registered event.

    `id` is assigned by the EventStore on create; `ledger_event_id` is set
    from the ledger registration before the event is ever stored.
    """
    id: Optional[str] = None
    ledger_event_id: int
    organizer_identity: str
    metadata_ref: str
    claim_token: str
    geofence: Optional[Geofence] = None
    name: Optional[str] = None
    status: EventStatus = EventStatus.ACTIVE
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    claim_expiry_minutes: int = 60
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def claim_deadline(self) -> Optional[datetime]:
        """Last instant a claim is accepted, or None when unbounded"""
        if self.ends_at is None:
            return None
        return self.ends_at + timedelta(minutes=self.claim_expiry_minutes)


class ClaimRecord(BaseModel):
    """
    One identity's claim on one event.

    Starts as a `pending` reservation, turns `submitting` just before its
    mint is broadcast and becomes `committed` once the mint is final. `owner`
    identifies the request holding the reservation.
    """
    event_id: str
    attendee_identity: str
    status: ClaimStatus = ClaimStatus.PENDING
    owner: str = Field(default_factory=lambda: uuid.uuid4().hex)
    reserved_at: datetime = Field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    token_id: Optional[int] = None

    def is_stale(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        """
        A pending reservation nobody resolved within the TTL.

        Submitting reservations and those carrying a transaction hash are
        never stale: their mint may be final on the ledger.
        """
        if self.status != ClaimStatus.PENDING or self.transaction_hash:
            return False
        now = now or utcnow()
        return (now - self.reserved_at).total_seconds() > ttl_seconds


class ClaimRequest(BaseModel):
    """Transient claim attempt; validated and consumed, never persisted"""
    claim_token: str
    attendee_identity: str
    signature: str
    attendee_latitude: float
    attendee_longitude: float


class LedgerReceipt(BaseModel):
    """Final outcome of a ledger transaction"""
    tx_hash: str
    block_number: Optional[int] = None
    ledger_event_id: Optional[int] = None
    token_id: Optional[int] = None


class RegistrationResult(BaseModel):
    event_id: str
    ledger_event_id: int
    claim_token: str
    claim_link: str


class ClaimResult(BaseModel):
    event_id: str
    ledger_event_id: int
    attendee_identity: str
    transaction_hash: str
    token_id: Optional[int] = None
    claimed_at: datetime


class Badge(BaseModel):
    """A committed claim joined with its event, for collection reads"""
    event_id: str
    ledger_event_id: int
    metadata_ref: str
    organizer_identity: str
    name: Optional[str] = None
    claimed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    token_id: Optional[int] = None


class EventSummary(BaseModel):
    """Public view of an event; never carries the claim token"""
    event_id: str
    ledger_event_id: int
    name: Optional[str] = None
    metadata_ref: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    geofence: Optional[Geofence] = None
    distance_meters: Optional[float] = None


class Discovery(BaseModel):
    """Open events: those anyone can claim, and geofenced ones near the caller"""
    online: List[EventSummary] = Field(default_factory=list)
    nearby: List[EventSummary] = Field(default_factory=list)


class ClaimVerification(BaseModel):
    """Public proof that an identity holds an event's badge"""
    event_id: str
    ledger_event_id: int
    event_name: Optional[str] = None
    organizer_identity: str
    metadata_ref: str
    starts_at: Optional[datetime] = None
    attendee_identity: str
    claimed_at: datetime
    transaction_hash: Optional[str] = None
    token_id: Optional[int] = None
