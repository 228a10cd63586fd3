"""Store interfaces for events and claims."""
from abc import ABC, abstractmethod
from typing import Optional

from ..models import ClaimRecord, Event, EventStatus


class EventStore(ABC):
    """Durable record of registered events. Owns Event records exclusively."""

    @abstractmethod
    async def create(self, event: Event) -> Event:
        """
        Persist a new event and assign its internal id.

        Raises:
            ValidationError: If the claim token is already in use
            StoreUnavailable: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def get(self, event_id: str) -> Event:
        """Raises NotFound for an unknown id."""
        pass

    @abstractmethod
    async def find_by_claim_token(self, token: str) -> Event:
        """Raises NotFound for an unknown claim token."""
        pass

    @abstractmethod
    async def find_by_ledger_event_id(self, ledger_event_id: int) -> Event:
        """Raises NotFound for an unknown ledger event id."""
        pass

    @abstractmethod
    async def update_status(self, event_id: str, status: EventStatus) -> Event:
        pass

    @abstractmethod
    async def list_events(self) -> list[Event]:
        """All events, oldest first."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass


class ClaimLedger(ABC):
    """
    Durable record of which identities claimed which events.

    Uniqueness of (event_id, attendee_identity) is enforced by the backend
    itself. Minting goes through a reservation:

        reserve -> mark_submitting -> attach_transaction -> commit   (mint succeeded)
        reserve [-> mark_submitting] -> release                      (mint failed)

    Each reservation carries an `owner` token. Transitions given an owner
    only apply while the stored record still has that owner, so a request
    can never resolve a reservation another request reclaimed.

    A reservation left pending (process crash, long relayer queue) becomes
    reclaimable once older than the reservation TTL. Submitting
    reservations never do.
    """

    @abstractmethod
    async def exists(self, event_id: str, attendee_identity: str) -> bool:
        """True for a committed claim or an unexpired reservation."""
        pass

    @abstractmethod
    async def get(self, event_id: str, attendee_identity: str) -> Optional[ClaimRecord]:
        pass

    @abstractmethod
    async def reserve(self, event_id: str, attendee_identity: str) -> ClaimRecord:
        """
        Insert a pending reservation.

        Raises:
            DuplicateClaim: If a committed claim or live reservation exists
        """
        pass

    @abstractmethod
    async def mark_submitting(self, event_id: str, attendee_identity: str, owner: str) -> ClaimRecord:
        """
        Pin a pending reservation before its mint is broadcast.

        Raises:
            DuplicateClaim: If the reservation is gone or has another owner
        """
        pass

    @abstractmethod
    async def attach_transaction(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: str,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        """Record the submitted mint transaction on an unresolved reservation."""
        pass

    @abstractmethod
    async def commit(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: Optional[str] = None,
        token_id: Optional[int] = None,
        owner: Optional[str] = None,
    ) -> ClaimRecord:
        """
        Convert a reservation to a committed claim.

        Raises:
            DuplicateClaim: If the claim is already committed or has another owner
            NotFound: If there is no reservation to commit
        """
        pass

    @abstractmethod
    async def release(self, event_id: str, attendee_identity: str, owner: Optional[str] = None) -> bool:
        """Delete an unresolved reservation. Committed claims are never released."""
        pass

    @abstractmethod
    async def list_for_identity(self, attendee_identity: str) -> list[ClaimRecord]:
        """Committed claims for an identity, newest first."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def record(
        self,
        event_id: str,
        attendee_identity: str,
        tx_hash: Optional[str] = None,
        token_id: Optional[int] = None,
    ) -> ClaimRecord:
        """
        Insert a committed claim in one step.

        Raises:
            DuplicateClaim: If the (event, identity) pair is already taken
        """
        reserved = await self.reserve(event_id, attendee_identity)
        return await self.commit(event_id, attendee_identity, tx_hash=tx_hash, token_id=token_id, owner=reserved.owner)
