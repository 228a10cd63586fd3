"""
ClaimPipeline: event registration and badge claim workflows.

The pipeline holds no state of its own. It orchestrates the event store,
the claim ledger, the identity verifier and the relayer, all injected.

Claim states:

    Received -> LocationChecked -> IdentityVerified -> Uncommitted
             -> Minted -> Recorded

with a terminal rejection at every gate and Pending when ledger finality
is not observed in time. Gates run cheapest first: location before
signature so unauthenticated callers learn nothing about signature timing,
and signature before duplicate lookup so nobody can ask which identities
have claimed without proving control of one.
"""
import math
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
import structlog

from .geo import distance_meters, validate_coordinate, within_radius
from .identity import IdentityVerifier, canonical_message, is_identity_handle, normalize_identity
from .metadata import MetadataResolver
from ..errors import (
    AlreadyClaimed,
    DuplicateClaim,
    EventClosed,
    Forbidden,
    LedgerRejectedError,
    LedgerSubmissionError,
    LedgerTimeout,
    MintFailed,
    NotFound,
    OutOfRange,
    PresenceError,
    StoreUnavailable,
    ValidationError,
)
from ..ledger.relayer import LedgerRelayer
from ..models import (
    Badge,
    ClaimRequest,
    ClaimResult,
    ClaimStatus,
    ClaimVerification,
    Discovery,
    Event,
    EventStatus,
    EventSummary,
    Geofence,
    RegistrationResult,
    utcnow,
)
from ..stores.base import ClaimLedger, EventStore

log = structlog.get_logger()

CLAIM_TOKEN_BYTES = 32
CLAIM_TOKEN_ATTEMPTS = 3
ATTACH_ATTEMPTS = 2
DISCOVERY_LIMIT = 50
DISCOVERY_RADIUS_KM = 50.0


class ClaimState(str, Enum):
    RECEIVED = "received"
    LOCATION_CHECKED = "location_checked"
    IDENTITY_VERIFIED = "identity_verified"
    UNCOMMITTED = "uncommitted"
    MINTED = "minted"
    RECORDED = "recorded"
    PENDING = "pending"
    REJECTED = "rejected"


class ClaimPipeline:
    """Orchestrates registration and claims over injected collaborators."""

    def __init__(
        self,
        events: EventStore,
        claims: ClaimLedger,
        relayer: LedgerRelayer,
        verifier: Optional[IdentityVerifier] = None,
        metadata: Optional[MetadataResolver] = None,
        claim_base_url: str = "http://localhost:8080",
        default_claim_expiry_minutes: int = 60,
        finality_timeout: Optional[float] = None,
        metrics=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._events = events
        self._claims = claims
        self._relayer = relayer
        self._verifier = verifier or IdentityVerifier()
        self._metadata = metadata
        self._claim_base_url = claim_base_url.rstrip("/")
        self._default_claim_expiry = default_claim_expiry_minutes
        self._finality_timeout = finality_timeout
        self._metrics = metrics
        self._clock = clock

    # Registration

    async def register_event(
        self,
        organizer_identity: str,
        metadata_ref: str,
        geofence: Optional[Geofence] = None,
        name: Optional[str] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        claim_expiry_minutes: Optional[int] = None,
    ) -> RegistrationResult:
        """
        Register an event on the ledger, then store it with a fresh claim token.

        Raises:
            ValidationError: Malformed input; nothing was submitted or written
            LedgerSubmissionError / LedgerRejectedError: Ledger registration
                failed; nothing was written
            LedgerTimeout: Registration not final in time; nothing was written
            StoreUnavailable: Registered on the ledger but not stored (orphan)
        """
        if not is_identity_handle(organizer_identity):
            raise ValidationError("organizer_identity is not a valid identity handle")
        if not isinstance(metadata_ref, str) or not metadata_ref.strip():
            raise ValidationError("metadata_ref is required")
        if geofence is not None:
            validate_coordinate(geofence.latitude, geofence.longitude)
            if not math.isfinite(geofence.radius_meters) or geofence.radius_meters <= 0:
                raise ValidationError("geofence radius_meters must be greater than 0")
        starts_at = _as_utc(starts_at)
        ends_at = _as_utc(ends_at)
        if starts_at and ends_at and starts_at >= ends_at:
            raise ValidationError("starts_at must be before ends_at")
        if claim_expiry_minutes is None:
            claim_expiry_minutes = self._default_claim_expiry
        if claim_expiry_minutes < 0:
            raise ValidationError("claim_expiry_minutes must not be negative")

        organizer = normalize_identity(organizer_identity)
        try:
            ledger_event_id = await self._relayer.register_event(metadata_ref, timeout=self._finality_timeout)
        except LedgerTimeout as e:
            # May still land on the ledger with nothing stored locally
            if self._metrics is not None:
                self._metrics.orphaned_ledger_events_total.inc()
            log.error(
                "event.registration_unconfirmed",
                organizer=organizer,
                tx_hash=e.tx_hash,
                metadata_ref=metadata_ref,
            )
            raise

        event = Event(
            ledger_event_id=ledger_event_id,
            organizer_identity=organizer,
            metadata_ref=metadata_ref,
            claim_token="",
            geofence=geofence,
            name=name,
            starts_at=starts_at,
            ends_at=ends_at,
            claim_expiry_minutes=claim_expiry_minutes,
            created_at=self._clock(),
        )
        stored = await self._store_new_event(event)

        if self._metrics is not None:
            self._metrics.events_registered_total.inc()
        log.info(
            "event.registered",
            event_id=stored.id,
            ledger_event_id=ledger_event_id,
            organizer=organizer,
            geofenced=geofence is not None,
        )
        return RegistrationResult(
            event_id=stored.id,
            ledger_event_id=ledger_event_id,
            claim_token=stored.claim_token,
            claim_link=self.claim_link(stored.claim_token),
        )

    async def _store_new_event(self, event: Event) -> Event:
        for attempt in range(1, CLAIM_TOKEN_ATTEMPTS + 1):
            candidate = event.model_copy(update={"claim_token": secrets.token_urlsafe(CLAIM_TOKEN_BYTES)})
            try:
                return await self._events.create(candidate)
            except ValidationError:
                # Token collision; the ledger event is already registered so
                # only the local write is repeated
                if attempt < CLAIM_TOKEN_ATTEMPTS:
                    continue
                self._orphaned(event, "claim token collisions exhausted")
                raise StoreUnavailable("Could not allocate a unique claim token")
            except PresenceError as e:
                self._orphaned(event, e.message)
                raise

    def _orphaned(self, event: Event, reason: str):
        if self._metrics is not None:
            self._metrics.orphaned_ledger_events_total.inc()
        log.error(
            "event.orphaned",
            ledger_event_id=event.ledger_event_id,
            organizer=event.organizer_identity,
            metadata_ref=event.metadata_ref,
            reason=reason,
        )

    def claim_link(self, claim_token: str) -> str:
        return f"{self._claim_base_url}/claim/{claim_token}"

    async def cancel_event(self, event_id: str, organizer_identity: str) -> Event:
        """Cancel an event. Only its registering organizer may do so."""
        event = await self._events.get(event_id)
        if not is_identity_handle(organizer_identity) or \
                normalize_identity(organizer_identity) != event.organizer_identity:
            raise Forbidden("Only the event's organizer can cancel it")
        if event.status == EventStatus.CANCELLED:
            return event
        cancelled = await self._events.update_status(event_id, EventStatus.CANCELLED)
        log.info("event.cancelled", event_id=event_id, ledger_event_id=event.ledger_event_id)
        return cancelled

    # Claims

    async def claim_message(self, claim_token: str) -> str:
        """The message an attendee must sign, for a known claim token."""
        await self._events.find_by_claim_token(claim_token)
        return canonical_message(claim_token)

    async def claim(self, request: ClaimRequest) -> ClaimResult:
        """
        Run a claim through every gate and mint the badge.

        Raises:
            ValidationError / InvalidCoordinate: Malformed request
            NotFound: Unknown claim token
            EventClosed: Event cancelled or claim window over
            OutOfRange: Outside the geofence (carries distance and limit)
            InvalidSignature: Signature does not prove the identity
            AlreadyClaimed: Identity already claimed or is claiming
            MintFailed: Ledger refused the mint
            LedgerSubmissionError: Mint could not be submitted; nothing recorded
            LedgerTimeout: Mint submitted but not final in time (Pending)
            StoreUnavailable: Store outage
        """
        claim_log = log.bind(claim_token=request.claim_token[:8], attendee=request.attendee_identity)
        try:
            result = await self._claim(request, claim_log)
        except LedgerTimeout as e:
            self._outcome(claim_log, ClaimState.PENDING, tx_hash=e.tx_hash)
            raise
        except LedgerSubmissionError as e:
            self._outcome(claim_log, ClaimState.UNCOMMITTED, reason=e.code)
            raise
        except PresenceError as e:
            self._outcome(claim_log, ClaimState.REJECTED, reason=e.code)
            raise
        self._outcome(claim_log, ClaimState.RECORDED, tx_hash=result.transaction_hash)
        return result

    def _outcome(self, claim_log, state: ClaimState, **fields):
        outcome = fields.get("reason", state.value) if state == ClaimState.REJECTED else state.value
        if self._metrics is not None:
            self._metrics.record_claim(outcome)
        if state == ClaimState.RECORDED:
            claim_log.info("claim.recorded", state=state.value, **fields)
        elif state == ClaimState.PENDING:
            claim_log.warning("claim.pending", state=state.value, **fields)
        else:
            claim_log.info("claim.not_recorded", state=state.value, **fields)

    async def _claim(self, request: ClaimRequest, claim_log) -> ClaimResult:
        if not is_identity_handle(request.attendee_identity):
            raise ValidationError("attendee_identity is not a valid identity handle")
        if not request.signature:
            raise ValidationError("signature is required")
        validate_coordinate(request.attendee_latitude, request.attendee_longitude)
        attendee = normalize_identity(request.attendee_identity)

        event = await self._events.find_by_claim_token(request.claim_token)
        self._check_available(event)
        claim_log = claim_log.bind(event_id=event.id)

        if event.geofence is not None:
            fence = event.geofence
            center = (fence.latitude, fence.longitude)
            point = (request.attendee_latitude, request.attendee_longitude)
            if not within_radius(center, fence.radius_meters, point):
                raise OutOfRange(distance_meters(*center, *point), fence.radius_meters)
        claim_log.debug("claim.state", state=ClaimState.LOCATION_CHECKED.value)

        self._verifier.verify(canonical_message(request.claim_token), request.signature, request.attendee_identity)
        claim_log.debug("claim.state", state=ClaimState.IDENTITY_VERIFIED.value)

        if await self._claims.exists(event.id, attendee):
            raise AlreadyClaimed("Badge already claimed for this event")

        try:
            reservation = await self._claims.reserve(event.id, attendee)
        except DuplicateClaim as e:
            raise AlreadyClaimed("Badge already claimed for this event") from e
        owner = reservation.owner
        claim_log.debug("claim.state", state=ClaimState.UNCOMMITTED.value)

        receipt = await self._mint(event, attendee, owner, claim_log)
        claim_log.debug("claim.state", state=ClaimState.MINTED.value, tx_hash=receipt.tx_hash)

        try:
            record = await self._claims.commit(
                event.id, attendee, tx_hash=receipt.tx_hash, token_id=receipt.token_id, owner=owner
            )
        except DuplicateClaim as e:
            raise AlreadyClaimed("Badge already claimed for this event") from e
        except StoreUnavailable:
            # Minted on the ledger; the reservation stays submitting and is
            # never reclaimed, so the identity cannot mint again until reconciled
            claim_log.error("claim.commit_failed", tx_hash=receipt.tx_hash, token_id=receipt.token_id)
            raise

        return ClaimResult(
            event_id=event.id,
            ledger_event_id=event.ledger_event_id,
            attendee_identity=attendee,
            transaction_hash=receipt.tx_hash,
            token_id=receipt.token_id,
            claimed_at=record.claimed_at,
        )

    def _check_available(self, event: Event):
        if event.status == EventStatus.CANCELLED:
            raise EventClosed("This event has been cancelled")
        deadline = event.claim_deadline
        if deadline is not None and self._clock() > deadline:
            raise EventClosed("The claim period for this event has expired", claim_deadline=deadline.isoformat())

    async def _mint(self, event: Event, attendee: str, owner: str, claim_log):
        async def mark_submitting():
            await self._claims.mark_submitting(event.id, attendee, owner)

        try:
            pending = await self._relayer.submit_mint(
                event.ledger_event_id, attendee, before_broadcast=mark_submitting
            )
        except DuplicateClaim as e:
            # Reclaimed by another request while this one waited in the
            # relayer queue; nothing was broadcast and the key is not ours
            claim_log.warning("claim.reservation_lost", event_id=event.id)
            raise AlreadyClaimed("Badge already claimed for this event") from e
        except StoreUnavailable:
            await self._release(event, attendee, owner, claim_log)
            raise
        except LedgerRejectedError as e:
            await self._release(event, attendee, owner, claim_log)
            raise MintFailed(f"Badge mint was rejected: {e.message}") from e
        except LedgerSubmissionError:
            await self._release(event, attendee, owner, claim_log)
            raise

        await self._attach(event, attendee, owner, pending.tx_hash, claim_log)

        try:
            return await pending.result(self._finality_timeout)
        except LedgerRejectedError as e:
            await self._release(event, attendee, owner, claim_log)
            raise MintFailed(f"Badge mint reverted: {e.message}", transaction_hash=pending.tx_hash) from e
        except LedgerSubmissionError as e:
            # Broadcast already happened; the mint may still land, so the
            # reservation is kept rather than released
            claim_log.error("claim.mint_unconfirmed", tx_hash=pending.tx_hash, error=e.message)
            raise LedgerTimeout(pending.tx_hash, self._finality_timeout or 0.0) from e

    async def _attach(self, event: Event, attendee: str, owner: str, tx_hash: str, claim_log):
        """Record the broadcast hash on the reservation, retrying once."""
        for attempt in range(1, ATTACH_ATTEMPTS + 1):
            try:
                await self._claims.attach_transaction(event.id, attendee, tx_hash, owner=owner)
                return
            except StoreUnavailable as e:
                if attempt < ATTACH_ATTEMPTS:
                    claim_log.warning("claim.attach_retry", tx_hash=tx_hash, error=e.message)
                    continue
                # Still submitting without a hash; not reclaimable either way
                claim_log.error("claim.attach_failed", tx_hash=tx_hash, error=e.message)
            except PresenceError as e:
                claim_log.error("claim.attach_failed", tx_hash=tx_hash, error=e.message)
                return

    async def _release(self, event: Event, attendee: str, owner: str, claim_log):
        try:
            await self._claims.release(event.id, attendee, owner=owner)
        except StoreUnavailable:
            # Left in place; a pending reservation is reclaimable after the
            # TTL, a submitting one waits for reconciliation
            claim_log.error("claim.release_failed", event_id=event.id)

    # Reads

    async def list_badges(self, identity: str) -> list[Badge]:
        if not is_identity_handle(identity):
            raise ValidationError("Invalid identity handle")
        badges = []
        for record in await self._claims.list_for_identity(normalize_identity(identity)):
            event = await self._events.get(record.event_id)
            badges.append(Badge(
                event_id=event.id,
                ledger_event_id=event.ledger_event_id,
                metadata_ref=event.metadata_ref,
                organizer_identity=event.organizer_identity,
                name=event.name,
                claimed_at=record.claimed_at,
                transaction_hash=record.transaction_hash,
                token_id=record.token_id,
            ))
        return badges

    async def get_metadata(self, ledger_event_id: int) -> Dict[str, Any]:
        event = await self._events.find_by_ledger_event_id(ledger_event_id)
        if self._metadata is None:
            return {"metadata_ref": event.metadata_ref}
        return await self._metadata.resolve(event.metadata_ref)

    async def discover_events(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: float = DISCOVERY_RADIUS_KM,
        limit: int = DISCOVERY_LIMIT,
    ) -> Discovery:
        """
        Active events that have not ended, earliest start first.

        Events without a geofence are listed as online. Geofenced events are
        listed as nearby only when the caller gives a position and the
        geofence center lies within `radius_km` of it.
        """
        located = latitude is not None or longitude is not None
        if located:
            if latitude is None or longitude is None:
                raise ValidationError("latitude and longitude must be given together")
            validate_coordinate(latitude, longitude)
        if not math.isfinite(radius_km) or radius_km <= 0:
            raise ValidationError("radius_km must be greater than 0")

        now = self._clock()
        upcoming = [
            e for e in await self._events.list_events()
            if e.status == EventStatus.ACTIVE and (e.ends_at is None or e.ends_at > now)
        ]
        upcoming.sort(key=lambda e: e.starts_at or e.created_at)

        discovery = Discovery()
        for event in upcoming[:limit]:
            if event.geofence is None:
                discovery.online.append(_summary(event))
                continue
            if not located:
                continue
            fence = event.geofence
            distance = distance_meters(latitude, longitude, fence.latitude, fence.longitude)
            if distance <= radius_km * 1000:
                discovery.nearby.append(_summary(event, distance))
        return discovery

    async def verify_claim(self, claim_token: str, identity: str) -> ClaimVerification:
        """
        Public proof that `identity` holds the badge behind a claim link.

        Raises:
            ValidationError: Malformed identity
            NotFound: Unknown claim link, or the badge was not claimed
        """
        if not is_identity_handle(identity):
            raise ValidationError("Invalid identity handle")
        event = await self._events.find_by_claim_token(claim_token)
        record = await self._claims.get(event.id, normalize_identity(identity))
        if record is None or record.status != ClaimStatus.COMMITTED:
            raise NotFound("Badge issued but not yet claimed")
        return ClaimVerification(
            event_id=event.id,
            ledger_event_id=event.ledger_event_id,
            event_name=event.name,
            organizer_identity=event.organizer_identity,
            metadata_ref=event.metadata_ref,
            starts_at=event.starts_at,
            attendee_identity=record.attendee_identity,
            claimed_at=record.claimed_at,
            transaction_hash=record.transaction_hash,
            token_id=record.token_id,
        )


def _summary(event: Event, distance: Optional[float] = None) -> EventSummary:
    return EventSummary(
        event_id=event.id,
        ledger_event_id=event.ledger_event_id,
        name=event.name,
        metadata_ref=event.metadata_ref,
        starts_at=event.starts_at,
        ends_at=event.ends_at,
        geofence=event.geofence,
        distance_meters=distance,
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
