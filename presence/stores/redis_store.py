"""Redis-backed event and claim stores.

Events are stored as JSON documents keyed by internal id, with secondary
index keys for the claim token and ledger event id. The claim-token index
is written with SET NX so uniqueness is enforced by Redis, not by a
read-then-write in application code.

Claims live under one key per (event, identity). Reservations are created
with SET NX. Every later transition (submitting, attach, commit, release,
reclaim) is a compare-and-swap Lua script against the exact document that
was read, so two workers can never both win the same key. Commit writes the
claim document and the per-identity index in one script.
"""
from typing import Optional
import structlog
import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import ClaimLedger, EventStore
from ..errors import DuplicateClaim, NotFound, StoreUnavailable, ValidationError
from ..models import ClaimRecord, ClaimStatus, Event, EventStatus, utcnow

log = structlog.get_logger()

KEY_PREFIX = "presence"
EVENTS_INDEX = f"{KEY_PREFIX}:events"

# KEYS[1] = key, ARGV[1] = expected document, ARGV[2] = replacement
COMPARE_AND_SET = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2])
    return 1
end
return 0
"""

# KEYS[1] = key, ARGV[1] = expected document
COMPARE_AND_DELETE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# KEYS[1] = claim key, KEYS[2] = identity index
# ARGV[1] = expected document, ARGV[2] = committed document,
# ARGV[3] = claimed_at score, ARGV[4] = event id
COMMIT_CLAIM = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
    redis.call('SET', KEYS[1], ARGV[2])
    return 1
end
return 0
"""


def create_client(redis_url: str) -> redis.Redis:
    return redis.Redis.from_url(
        redis_url,
        decode_responses=False,  # documents are orjson bytes
        socket_connect_timeout=5,
        socket_timeout=5,
    )


def _dump(model) -> bytes:
    return orjson.dumps(model.model_dump(mode="json"))


class RedisEventStore(EventStore):
    """Redis implementation of the event store."""

    def __init__(self, client: redis.Redis):
        self._client = client

    def _event_key(self, event_id: str) -> str:
        return f"{KEY_PREFIX}:event:{event_id}"

    def _token_key(self, token: str) -> str:
        return f"{KEY_PREFIX}:event:token:{token}"

    def _ledger_key(self, ledger_event_id: int) -> str:
        return f"{KEY_PREFIX}:event:ledger:{ledger_event_id}"

    async def create(self, event: Event) -> Event:
        try:
            event_id = str(await self._client.incr(f"{KEY_PREFIX}:event:seq"))
            claimed = await self._client.set(self._token_key(event.claim_token), event_id, nx=True)
            if not claimed:
                raise ValidationError("Claim token already in use")

            stored = event.model_copy(update={"id": event_id})
            await self._client.set(self._event_key(event_id), _dump(stored))
            await self._client.set(self._ledger_key(stored.ledger_event_id), event_id)
            await self._client.zadd(EVENTS_INDEX, {event_id: stored.created_at.timestamp()})
        except RedisError as e:
            log.error("redis.event_create_failed", error=str(e), ledger_event_id=event.ledger_event_id)
            raise StoreUnavailable("Event store unavailable") from e

        log.info("event.stored", event_id=event_id, ledger_event_id=stored.ledger_event_id, store="redis")
        return stored

    async def get(self, event_id: str) -> Event:
        try:
            raw = await self._client.get(self._event_key(event_id))
        except RedisError as e:
            log.error("redis.event_get_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Event store unavailable") from e
        if raw is None:
            raise NotFound(f"Event {event_id} not found")
        return Event(**orjson.loads(raw))

    async def _resolve(self, index_key: str, not_found: str) -> Event:
        try:
            event_id = await self._client.get(index_key)
        except RedisError as e:
            log.error("redis.event_lookup_failed", error=str(e))
            raise StoreUnavailable("Event store unavailable") from e
        if event_id is None:
            raise NotFound(not_found)
        if isinstance(event_id, bytes):
            event_id = event_id.decode()
        return await self.get(event_id)

    async def find_by_claim_token(self, token: str) -> Event:
        return await self._resolve(self._token_key(token), "Claim link is invalid")

    async def find_by_ledger_event_id(self, ledger_event_id: int) -> Event:
        return await self._resolve(self._ledger_key(ledger_event_id), f"Ledger event {ledger_event_id} not found")

    async def list_events(self) -> list[Event]:
        try:
            event_ids = await self._client.zrange(EVENTS_INDEX, 0, -1)
            if not event_ids:
                return []
            documents = await self._client.mget([
                self._event_key(eid.decode() if isinstance(eid, bytes) else eid) for eid in event_ids
            ])
        except RedisError as e:
            log.error("redis.event_list_failed", error=str(e))
            raise StoreUnavailable("Event store unavailable") from e
        return [Event(**orjson.loads(raw)) for raw in documents if raw is not None]

    async def update_status(self, event_id: str, status: EventStatus) -> Event:
        event = await self.get(event_id)
        updated = event.model_copy(update={"status": status})
        try:
            await self._client.set(self._event_key(event_id), _dump(updated))
        except RedisError as e:
            log.error("redis.event_update_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Event store unavailable") from e
        return updated

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False


class RedisClaimLedger(ClaimLedger):
    """Redis implementation of the claim ledger."""

    def __init__(self, client: redis.Redis, reservation_ttl_seconds: float = 300):
        self._client = client
        self._ttl = reservation_ttl_seconds

    def _claim_key(self, event_id: str, attendee_identity: str) -> str:
        return f"{KEY_PREFIX}:claim:{event_id}:{attendee_identity.lower()}"

    def _identity_key(self, attendee_identity: str) -> str:
        return f"{KEY_PREFIX}:identity:{attendee_identity.lower()}:claims"

    async def _read(self, key: str) -> tuple[Optional[bytes], Optional[ClaimRecord]]:
        raw = await self._client.get(key)
        if raw is None:
            return None, None
        return raw, ClaimRecord(**orjson.loads(raw))

    async def _swap(self, key: str, expected: bytes, replacement: bytes) -> bool:
        return bool(await self._client.eval(COMPARE_AND_SET, 1, key, expected, replacement))

    async def exists(self, event_id: str, attendee_identity: str) -> bool:
        record = await self.get(event_id, attendee_identity)
        return record is not None and not record.is_stale(self._ttl)

    async def get(self, event_id: str, attendee_identity: str) -> Optional[ClaimRecord]:
        try:
            _, record = await self._read(self._claim_key(event_id, attendee_identity))
        except RedisError as e:
            log.error("redis.claim_get_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Claim store unavailable") from e
        return record

    async def reserve(self, event_id: str, attendee_identity: str) -> ClaimRecord:
        key = self._claim_key(event_id, attendee_identity)
        record = ClaimRecord(event_id=event_id, attendee_identity=attendee_identity.lower())
        payload = _dump(record)

        try:
            if await self._client.set(key, payload, nx=True):
                return record

            raw, existing = await self._read(key)
            if existing is None:
                # Released between our SET NX and GET; one more attempt
                if await self._client.set(key, payload, nx=True):
                    return record
                raise DuplicateClaim(event_id, record.attendee_identity)

            if not existing.is_stale(self._ttl):
                raise DuplicateClaim(event_id, record.attendee_identity, existing=existing)

            if not await self._swap(key, raw, payload):
                raise DuplicateClaim(event_id, record.attendee_identity)
        except RedisError as e:
            log.error("redis.reserve_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Claim store unavailable") from e

        log.warning(
            "reservation.reclaimed",
            event_id=event_id,
            attendee=record.attendee_identity,
            reserved_at=existing.reserved_at.isoformat(),
        )
        return record

    async def mark_submitting(self, event_id: str, attendee_identity: str, owner: str) -> ClaimRecord:
        key = self._claim_key(event_id, attendee_identity)
        try:
            raw, existing = await self._read(key)
            if existing is None or existing.owner != owner or existing.status != ClaimStatus.PENDING:
                raise DuplicateClaim(event_id, attendee_identity.lower(), existing=existing)
            updated = existing.model_copy(update={"status": ClaimStatus.SUBMITTING})
            if not await self._swap(key, raw, _dump(updated)):
                raise DuplicateClaim(event_id, attendee_identity.lower())
        except RedisError as e:
            log.error("redis.mark_submitting_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Claim store unavailable") from e
        return updated

    async def _read_owned(
        self, key: str, event_id: str, attendee_identity: str, owner: Optional[str]
    ) -> tuple[bytes, ClaimRecord]:
        raw, existing = await self._read(key)
        if existing is None:
            raise NotFound(f"No reservation for {attendee_identity.lower()} on event {event_id}")
        if existing.status == ClaimStatus.COMMITTED or (owner is not None and existing.owner != owner):
            raise DuplicateClaim(event_id, existing.attendee_identity, existing=existing)
        return raw, existing

    async def attach_transaction(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: str,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        key = self._claim_key(event_id, attendee_identity)
        try:
            raw, existing = await self._read_owned(key, event_id, attendee_identity, owner)
            updated = existing.model_copy(update={"transaction_hash": tx_hash})
            if not await self._swap(key, raw, _dump(updated)):
                raise DuplicateClaim(event_id, existing.attendee_identity)
        except RedisError as e:
            log.error("redis.attach_failed", error=str(e), event_id=event_id, tx_hash=tx_hash)
            raise StoreUnavailable("Claim store unavailable") from e
        return updated

    async def commit(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: Optional[str] = None,
        token_id: Optional[int] = None,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        key = self._claim_key(event_id, attendee_identity)
        try:
            raw, existing = await self._read_owned(key, event_id, attendee_identity, owner)
            committed = existing.model_copy(update={
                "status": ClaimStatus.COMMITTED,
                "claimed_at": utcnow(),
                "transaction_hash": tx_hash or existing.transaction_hash,
                "token_id": token_id,
            })
            # Document and identity index change together or not at all
            swapped = await self._client.eval(
                COMMIT_CLAIM,
                2,
                key,
                self._identity_key(attendee_identity),
                raw,
                _dump(committed),
                committed.claimed_at.timestamp(),
                event_id,
            )
            if not swapped:
                raise DuplicateClaim(event_id, existing.attendee_identity)
        except RedisError as e:
            log.error("redis.commit_failed", error=str(e), event_id=event_id, tx_hash=tx_hash)
            raise StoreUnavailable("Claim store unavailable") from e
        return committed

    async def release(self, event_id: str, attendee_identity: str, owner: Optional[str] = None) -> bool:
        key = self._claim_key(event_id, attendee_identity)
        try:
            raw, existing = await self._read(key)
            if existing is None or existing.status == ClaimStatus.COMMITTED:
                return False
            if owner is not None and existing.owner != owner:
                return False
            return bool(await self._client.eval(COMPARE_AND_DELETE, 1, key, raw))
        except RedisError as e:
            log.error("redis.release_failed", error=str(e), event_id=event_id)
            raise StoreUnavailable("Claim store unavailable") from e

    async def list_for_identity(self, attendee_identity: str) -> list[ClaimRecord]:
        try:
            event_ids = await self._client.zrevrange(self._identity_key(attendee_identity), 0, -1)
            if not event_ids:
                return []
            keys = [
                self._claim_key(eid.decode() if isinstance(eid, bytes) else eid, attendee_identity)
                for eid in event_ids
            ]
            documents = await self._client.mget(keys)
        except RedisError as e:
            log.error("redis.list_failed", error=str(e))
            raise StoreUnavailable("Claim store unavailable") from e

        records = []
        for raw in documents:
            if raw is None:
                continue
            record = ClaimRecord(**orjson.loads(raw))
            if record.status == ClaimStatus.COMMITTED:
                records.append(record)
        return records

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False
