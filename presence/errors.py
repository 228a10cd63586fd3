"""
Error taxonomy for the presence service.

Every failure the claim pipeline can surface is a PresenceError subclass
carrying:
- code: stable machine-readable discriminator returned to API callers
- status_code: HTTP status used by the API layer
- retryable: whether resubmitting the same request unchanged may succeed

Rejections (deterministic, caller must change the request) are never
retryable. Infrastructure outcomes (ledger submission, store outage,
finality timeout) are.
"""
from typing import Any, Dict, Optional


class PresenceError(Exception):
    """Base exception for presence service errors"""

    code: str = "presence_error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


class ValidationError(PresenceError):
    """Raised for malformed input; nothing has been written"""

    code = "validation_error"
    status_code = 422


class InvalidCoordinate(ValidationError):
    """Raised when a latitude/longitude is non-finite or out of range"""

    code = "invalid_coordinate"


class NotFound(PresenceError):
    """Raised for an unknown claim token or event"""

    code = "not_found"
    status_code = 404


class Forbidden(PresenceError):
    """Raised when an organizer acts on an event they did not register"""

    code = "forbidden"
    status_code = 403


class EventClosed(PresenceError):
    """Raised when an event is cancelled or its claim window has passed"""

    code = "event_closed"
    status_code = 403


class OutOfRange(PresenceError):
    """Raised when the attendee is outside the event geofence"""

    code = "out_of_range"
    status_code = 403

    def __init__(self, distance_meters: float, allowed_radius_meters: float):
        super().__init__(
            f"Attendee is {distance_meters:.1f}m from the event, "
            f"allowed radius is {allowed_radius_meters:.1f}m",
            distance_meters=round(distance_meters, 2),
            allowed_radius_meters=allowed_radius_meters,
        )
        self.distance_meters = distance_meters
        self.allowed_radius_meters = allowed_radius_meters


class InvalidSignature(PresenceError):
    """Raised when the claim signature does not prove the claimed identity"""

    code = "invalid_signature"
    status_code = 401


class AlreadyClaimed(PresenceError):
    """Raised when the identity already holds (or is minting) this badge"""

    code = "already_claimed"
    status_code = 409


class DuplicateClaim(PresenceError):
    """Raised by a ClaimLedger when the (event, identity) key is taken"""

    code = "duplicate_claim"
    status_code = 409

    def __init__(self, event_id: str, attendee_identity: str, existing: Optional[Any] = None):
        super().__init__(
            f"Claim for {attendee_identity} on event {event_id} already exists",
            event_id=event_id,
        )
        self.existing = existing


class StoreUnavailable(PresenceError):
    """Raised when the event or claim store cannot be reached"""

    code = "store_unavailable"
    status_code = 503
    retryable = True


class LedgerError(PresenceError):
    """Base class for failures talking to the external ledger"""

    code = "ledger_error"
    status_code = 502


class LedgerSubmissionError(LedgerError):
    """Transient ledger failure; the caller may retry with backoff"""

    code = "ledger_unavailable"
    status_code = 503
    retryable = True


class LedgerRejectedError(LedgerError):
    """Permanent ledger failure (reverted or malformed transaction)"""

    code = "ledger_rejected"
    status_code = 422


class MintFailed(LedgerRejectedError):
    """Raised to claim callers when the ledger refused to mint the badge"""

    code = "mint_failed"


class LedgerTimeout(LedgerError):
    """
    Finality was not observed within the bounded wait.

    The transaction may still land; the outcome is pending, not failed.
    """

    code = "pending"
    status_code = 202
    retryable = False

    def __init__(self, tx_hash: str, timeout_seconds: float):
        super().__init__(
            f"Transaction {tx_hash} not final after {timeout_seconds}s",
            transaction_hash=tx_hash,
        )
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
