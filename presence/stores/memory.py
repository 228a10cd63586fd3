"""In-memory event and claim stores."""
import asyncio
from typing import Optional
import structlog

from .base import ClaimLedger, EventStore
from ..errors import DuplicateClaim, NotFound, ValidationError
from ..models import ClaimRecord, ClaimStatus, Event, EventStatus, utcnow

log = structlog.get_logger()


def _claim_key(event_id: str, attendee_identity: str) -> tuple[str, str]:
    return event_id, attendee_identity.lower()


class InMemoryEventStore(EventStore):
    """In-memory implementation of the event store."""

    def __init__(self):
        self._events: dict[str, Event] = {}
        self._by_token: dict[str, str] = {}
        self._by_ledger_id: dict[int, str] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def create(self, event: Event) -> Event:
        async with self._lock:
            if event.claim_token in self._by_token:
                raise ValidationError("Claim token already in use")
            stored = event.model_copy(update={"id": str(self._next_id)})
            self._next_id += 1
            self._events[stored.id] = stored
            self._by_token[stored.claim_token] = stored.id
            self._by_ledger_id[stored.ledger_event_id] = stored.id
        log.info("event.stored", event_id=stored.id, ledger_event_id=stored.ledger_event_id, store="memory")
        return stored

    async def get(self, event_id: str) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        return event

    async def find_by_claim_token(self, token: str) -> Event:
        event_id = self._by_token.get(token)
        if event_id is None:
            raise NotFound("Claim link is invalid")
        return self._events[event_id]

    async def find_by_ledger_event_id(self, ledger_event_id: int) -> Event:
        event_id = self._by_ledger_id.get(ledger_event_id)
        if event_id is None:
            raise NotFound(f"Ledger event {ledger_event_id} not found")
        return self._events[event_id]

    async def list_events(self) -> list[Event]:
        return sorted(self._events.values(), key=lambda e: e.created_at)

    async def update_status(self, event_id: str, status: EventStatus) -> Event:
        async with self._lock:
            event = await self.get(event_id)
            updated = event.model_copy(update={"status": status})
            self._events[event_id] = updated
        return updated

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True


class InMemoryClaimLedger(ClaimLedger):
    """
    In-memory claim ledger.

    A single asyncio.Lock makes each check-and-write atomic, standing in for
    a database unique constraint and row-level compare-and-set.
    """

    def __init__(self, reservation_ttl_seconds: float = 300):
        self._claims: dict[tuple[str, str], ClaimRecord] = {}
        self._lock = asyncio.Lock()
        self._ttl = reservation_ttl_seconds

    def _owned(self, key: tuple[str, str], owner: Optional[str]) -> ClaimRecord:
        existing = self._claims.get(key)
        if existing is None:
            raise NotFound(f"No reservation for {key[1]} on event {key[0]}")
        if owner is not None and existing.owner != owner:
            raise DuplicateClaim(key[0], key[1], existing=existing)
        return existing

    async def exists(self, event_id: str, attendee_identity: str) -> bool:
        record = self._claims.get(_claim_key(event_id, attendee_identity))
        return record is not None and not record.is_stale(self._ttl)

    async def get(self, event_id: str, attendee_identity: str) -> Optional[ClaimRecord]:
        return self._claims.get(_claim_key(event_id, attendee_identity))

    async def reserve(self, event_id: str, attendee_identity: str) -> ClaimRecord:
        key = _claim_key(event_id, attendee_identity)
        async with self._lock:
            existing = self._claims.get(key)
            if existing is not None:
                if not existing.is_stale(self._ttl):
                    raise DuplicateClaim(event_id, key[1], existing=existing)
                log.warning(
                    "reservation.reclaimed",
                    event_id=event_id,
                    attendee=key[1],
                    reserved_at=existing.reserved_at.isoformat(),
                )
            record = ClaimRecord(event_id=event_id, attendee_identity=key[1])
            self._claims[key] = record
            return record

    async def mark_submitting(self, event_id: str, attendee_identity: str, owner: str) -> ClaimRecord:
        key = _claim_key(event_id, attendee_identity)
        async with self._lock:
            existing = self._claims.get(key)
            if existing is None or existing.owner != owner or existing.status != ClaimStatus.PENDING:
                raise DuplicateClaim(event_id, key[1], existing=existing)
            updated = existing.model_copy(update={"status": ClaimStatus.SUBMITTING})
            self._claims[key] = updated
            return updated

    async def attach_transaction(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: str,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        key = _claim_key(event_id, attendee_identity)
        async with self._lock:
            existing = self._owned(key, owner)
            if existing.status == ClaimStatus.COMMITTED:
                raise DuplicateClaim(event_id, key[1], existing=existing)
            updated = existing.model_copy(update={"transaction_hash": tx_hash})
            self._claims[key] = updated
            return updated

    async def commit(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: Optional[str] = None,
        token_id: Optional[int] = None,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        key = _claim_key(event_id, attendee_identity)
        async with self._lock:
            existing = self._owned(key, owner)
            if existing.status == ClaimStatus.COMMITTED:
                raise DuplicateClaim(event_id, key[1], existing=existing)
            committed = existing.model_copy(update={
                "status": ClaimStatus.COMMITTED,
                "claimed_at": utcnow(),
                "transaction_hash": tx_hash or existing.transaction_hash,
                "token_id": token_id,
            })
            self._claims[key] = committed
            return committed

    async def release(self, event_id: str, attendee_identity: str, owner: Optional[str] = None) -> bool:
        key = _claim_key(event_id, attendee_identity)
        async with self._lock:
            existing = self._claims.get(key)
            if existing is None or existing.status == ClaimStatus.COMMITTED:
                return False
            if owner is not None and existing.owner != owner:
                return False
            del self._claims[key]
            return True

    async def list_for_identity(self, attendee_identity: str) -> list[ClaimRecord]:
        identity = attendee_identity.lower()
        records = [
            r for (_, who), r in self._claims.items()
            if who == identity and r.status == ClaimStatus.COMMITTED
        ]
        return sorted(records, key=lambda r: r.claimed_at, reverse=True)

    async def health_check(self) -> bool:
        return True
